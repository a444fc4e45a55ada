from __future__ import annotations

from typing import Iterable, Optional

from sirm.domain.errors import ValidationError
from sirm.domain.models import UnitIdentity

STORAGE_DELIMITER = ","
IMPORT_DELIMITER = ";"
_RESERVED = (STORAGE_DELIMITER, IMPORT_DELIMITER)


def parse_delimited_ids(raw: Optional[str], delimiter: str = STORAGE_DELIMITER) -> list[str]:
    """Split a delimited identifier field, keeping token order.

    Order matters: the n-th id lines up with the n-th entry of the size field.
    """
    if not raw:
        return []
    return [tok.strip() for tok in str(raw).split(delimiter) if tok.strip()]


def align_sizes(ids: list[str], raw_sizes: Optional[str], delimiter: str = STORAGE_DELIMITER) -> list[str]:
    sizes = [tok.strip() for tok in str(raw_sizes).split(delimiter)] if raw_sizes else []
    sizes = sizes[: len(ids)]
    while len(sizes) < len(ids):
        sizes.append("")
    return sizes


def canonical(identifier: Optional[str]) -> str:
    return (identifier or "").strip().lower()


def same_identifier(a: Optional[str], b: Optional[str]) -> bool:
    return canonical(a) == canonical(b)


def validate_identifier(identifier: Optional[str]) -> str:
    cleaned = (identifier or "").strip()
    if not cleaned:
        raise ValidationError("Device ID cannot be empty.")
    for sep in _RESERVED:
        if sep in cleaned:
            raise ValidationError(f"Device ID '{cleaned}' cannot contain '{sep}'.")
    return cleaned


def validate_size(size: Optional[str]) -> Optional[str]:
    if size is None:
        return None
    cleaned = str(size).strip()
    for sep in _RESERVED:
        if sep in cleaned:
            raise ValidationError(f"Size '{cleaned}' cannot contain '{sep}'.")
    return cleaned or None


def normalize_units(units: Iterable[UnitIdentity | str]) -> list[UnitIdentity]:
    out: list[UnitIdentity] = []
    for u in units:
        if isinstance(u, str):
            u = UnitIdentity(device_id=u)
        out.append(UnitIdentity(device_id=validate_identifier(u.device_id), size=validate_size(u.size)))
    return out


def units_from_fields(raw_ids: Optional[str], raw_sizes: Optional[str], delimiter: str = STORAGE_DELIMITER) -> list[UnitIdentity]:
    ids = parse_delimited_ids(raw_ids, delimiter)
    sizes = align_sizes(ids, raw_sizes, delimiter)
    return [UnitIdentity(device_id=i, size=s or None) for i, s in zip(ids, sizes)]


# ---------- storage adapter helpers ----------
def encode_units(units: Iterable[UnitIdentity]) -> tuple[str, str]:
    units = list(units)
    ids = STORAGE_DELIMITER.join(u.device_id for u in units)
    sizes = STORAGE_DELIMITER.join(u.size or "" for u in units)
    return ids, sizes


def decode_units(ids_field: Optional[str], sizes_field: Optional[str]) -> tuple[UnitIdentity, ...]:
    return tuple(units_from_fields(ids_field, sizes_field, STORAGE_DELIMITER))
