from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from sirm.domain.errors import DuplicateIdentifierError
from sirm.domain.identity import canonical

REGISTER = "register"
RETURN_LOOKUP = "return_lookup"


@dataclass(frozen=True)
class RegisteredUnit:
    product_id: int
    product_name: str
    device_id: str


@dataclass(frozen=True)
class Conflict:
    device_id: str
    source: str  # form | catalog | sold
    product_id: Optional[int] = None
    product_name: Optional[str] = None

    def message(self) -> str:
        if self.source == "form":
            return f"Device ID '{self.device_id}' is already entered in this form."
        if self.source == "catalog":
            return f"Device ID '{self.device_id}' is already registered on '{self.product_name}'."
        return f"Device ID '{self.device_id}' has already been sold."


@dataclass(frozen=True)
class DuplicateScope:
    in_form_units: tuple[str, ...] = ()
    catalog_units: tuple[RegisteredUnit, ...] = ()
    historical_sold_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        in_form_units: Iterable[str] = (),
        catalog_units: Iterable[RegisteredUnit] = (),
        historical_sold_ids: Iterable[str] = (),
    ) -> "DuplicateScope":
        return cls(
            in_form_units=tuple(in_form_units),
            catalog_units=tuple(catalog_units),
            historical_sold_ids=frozenset(canonical(s) for s in historical_sold_ids if canonical(s)),
        )


def check_duplicate(candidate: str, scope: DuplicateScope, purpose: str = REGISTER) -> Optional[Conflict]:
    key = canonical(candidate)
    if not key:
        return None

    for unit in scope.in_form_units:
        if canonical(unit) == key:
            return Conflict(device_id=candidate.strip(), source="form")

    for unit in scope.catalog_units:
        if canonical(unit.device_id) == key:
            return Conflict(
                device_id=candidate.strip(),
                source="catalog",
                product_id=unit.product_id,
                product_name=unit.product_name,
            )

    # Sold ids legitimately reappear when looking up a return.
    if purpose == REGISTER and key in scope.historical_sold_ids:
        return Conflict(device_id=candidate.strip(), source="sold")
    return None


def find_conflicts(candidates: Iterable[str], scope: DuplicateScope, purpose: str = REGISTER) -> list[Conflict]:
    """Check a batch; each candidate also counts as in-form for the ones after it."""
    conflicts: list[Conflict] = []
    seen: list[str] = list(scope.in_form_units)
    for cand in candidates:
        local = DuplicateScope(
            in_form_units=tuple(seen),
            catalog_units=scope.catalog_units,
            historical_sold_ids=scope.historical_sold_ids,
        )
        hit = check_duplicate(cand, local, purpose)
        if hit:
            conflicts.append(hit)
        seen.append(cand)
    return conflicts


def assert_no_duplicates(candidates: Iterable[str], scope: DuplicateScope, purpose: str = REGISTER) -> None:
    conflicts = find_conflicts(candidates, scope, purpose)
    if conflicts:
        ids = [c.device_id for c in conflicts]
        if len(conflicts) == 1:
            raise DuplicateIdentifierError(conflicts[0].message(), ids)
        raise DuplicateIdentifierError(f"Duplicate device IDs: {', '.join(ids)}", ids)
