from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Iterable, Optional

from sirm.domain.errors import NotFoundError, ReturnQuantityExceededError, ValidationError
from sirm.domain.identity import canonical
from sirm.domain.models import RETURN_STATUSES, ReturnDetails, ReturnRecord, SessionContext, UnitSaleRecord
from sirm.repositories.contracts import CatalogRepository
from sirm.services.auth_service import AuthService

log = logging.getLogger("sirm.returns")

INACTIVE_STATUS = "Rejected"


def _validate_status(status: str) -> str:
    cleaned = (status or "").strip().capitalize()
    if cleaned not in RETURN_STATUSES:
        raise ValidationError(f"Unknown return status '{status}'. Use one of: {', '.join(RETURN_STATUSES)}.")
    return cleaned


def _validate_date(value: Optional[str]) -> str:
    if not value:
        return date.today().isoformat()
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError as e:
        raise ValidationError(f"Returned date must be YYYY-MM-DD. Received: {value}") from e


def _unit_key(receipt_id: int, sale_id: Optional[int], device_id: Optional[str]) -> tuple:
    if device_id:
        return (int(receipt_id), "unit", canonical(device_id))
    return (int(receipt_id), "line", sale_id)


class ReturnsLedger:
    def __init__(self, repo: CatalogRepository, auth: AuthService | None = None):
        self.repo = repo
        self.auth = auth or AuthService()

    def list_returns(self, ctx: SessionContext) -> list[ReturnRecord]:
        self.auth.require_action(ctx, "view_returns")
        return self.repo.list_returns(ctx.store_id)

    def _returned_so_far(self, ctx: SessionContext, receipt_ids: Iterable[int], exclude_id: Optional[int] = None) -> dict[tuple, int]:
        used: dict[tuple, int] = defaultdict(int)
        for rid in sorted(set(receipt_ids)):
            for r in self.repo.list_returns_for_receipt(ctx.store_id, rid):
                if r.status == INACTIVE_STATUS or r.id == exclude_id:
                    continue
                used[_unit_key(r.receipt_id, r.sale_id, r.device_id)] += int(r.quantity)
        return used

    def create(
        self,
        ctx: SessionContext,
        candidates: Iterable[UnitSaleRecord],
        details: ReturnDetails,
        quantities: Optional[dict[str, int]] = None,
    ) -> list[ReturnRecord]:
        """One return per selected unit record.

        `quantities` maps composite ids of bulk lines to a partial return quantity.
        """
        self.auth.require_action(ctx, "create_return")
        candidates = list(candidates)
        if not candidates:
            raise ValidationError("Select at least one item to return.")
        quantities = quantities or {}
        status = _validate_status(details.status)
        returned_date = _validate_date(details.returned_date)
        remark = (details.reason_remark or "").strip()

        for c in candidates:
            if c.receipt_id is None:
                raise ValidationError(f"Item '{c.product_name}' has no receipt and cannot be returned.")

        used = self._returned_so_far(ctx, [c.receipt_id for c in candidates])
        rows: list[dict] = []
        for c in candidates:
            qty = int(quantities.get(c.composite_id, c.quantity))
            if qty <= 0:
                raise ValidationError(f"Return quantity for '{c.product_name}' must be >= 1.")
            if c.is_serialized and qty != 1:
                raise ValidationError(f"Serialized unit '{c.device_id}' can only be returned as 1.")

            key = _unit_key(c.receipt_id, c.sale_id, c.device_id)
            if status != INACTIVE_STATUS:
                if used[key] + qty > int(c.quantity):
                    label = c.device_id or c.product_name
                    raise ReturnQuantityExceededError(
                        f"'{label}' on receipt {c.receipt_code} is already returned "
                        f"({used[key]} of {c.quantity})."
                    )
                used[key] += qty

            if c.is_serialized or qty == c.quantity:
                amount = float(c.amount)
            else:
                amount = float(c.unit_price) * qty
            rows.append(
                {
                    "receipt_id": int(c.receipt_id),
                    "sale_id": int(c.sale_id),
                    "product_name": c.product_name,
                    "device_id": c.device_id,
                    "qty": qty,
                    "amount": amount,
                    "remark": remark,
                    "status": status,
                    "returned_date": returned_date,
                }
            )

        ids = self.repo.insert_returns(ctx.store_id, rows)
        log.info("returns_created count=%s status=%s actor=%s", len(ids), status, ctx.user.id)
        created = [self.repo.get_return(ctx.store_id, rid) for rid in ids]
        return [r for r in created if r is not None]

    def update(
        self,
        ctx: SessionContext,
        return_id: int,
        status: Optional[str] = None,
        returned_date: Optional[str] = None,
        reason_remark: Optional[str] = None,
    ) -> ReturnRecord:
        self.auth.require_action(ctx, "edit_return")
        current = self.repo.get_return(ctx.store_id, int(return_id))
        if not current:
            raise NotFoundError("Return not found.")

        fields: dict = {}
        if status is not None:
            fields["status"] = _validate_status(status)
        if returned_date is not None:
            fields["returned_date"] = _validate_date(returned_date)
        if reason_remark is not None:
            fields["remark"] = reason_remark.strip()
        if not fields:
            return current

        # re-activating a rejected return must still fit under the sold quantity
        if current.status == INACTIVE_STATUS and fields.get("status", INACTIVE_STATUS) != INACTIVE_STATUS:
            self._check_reactivation(ctx, current)

        if not self.repo.update_return(ctx.store_id, current.id, fields):
            raise NotFoundError("Return not found.")
        log.info("return_updated return_id=%s fields=%s actor=%s", current.id, sorted(fields), ctx.user.id)
        updated = self.repo.get_return(ctx.store_id, current.id)
        if not updated:
            raise NotFoundError("Return not found.")
        return updated

    def _check_reactivation(self, ctx: SessionContext, current: ReturnRecord) -> None:
        used = self._returned_so_far(ctx, [current.receipt_id], exclude_id=current.id)
        key = _unit_key(current.receipt_id, current.sale_id, current.device_id)
        limit = 1 if current.device_id else self._sold_quantity(ctx, current)
        if used[key] + current.quantity > limit:
            raise ReturnQuantityExceededError(
                f"'{current.device_id or current.product_name}' already has an active return."
            )

    def _sold_quantity(self, ctx: SessionContext, current: ReturnRecord) -> int:
        if not current.receipt_code:
            return current.quantity
        receipt = self.repo.get_receipt_by_code(ctx.store_id, current.receipt_code)
        if not receipt:
            return current.quantity
        for sale in self.repo.list_sales_for_group(ctx.store_id, receipt.sale_group_id):
            if sale.id == current.sale_id:
                return int(sale.quantity_sold)
        return current.quantity

    def delete(self, ctx: SessionContext, return_ids: Iterable[int]) -> int:
        """Batch delete. Returns never restock inventory."""
        self.auth.require_action(ctx, "delete_return")
        ids = {int(i) for i in return_ids}
        if not ids:
            return 0
        deleted = self.repo.delete_returns(ctx.store_id, ids)
        log.warning("returns_deleted requested=%s deleted=%s actor=%s", len(ids), deleted, ctx.user.id)
        return deleted
