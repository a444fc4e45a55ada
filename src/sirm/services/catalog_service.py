from __future__ import annotations

import logging
from typing import Iterable, Optional

from sirm.domain.duplicates import (
    REGISTER,
    Conflict,
    DuplicateScope,
    assert_no_duplicates,
    check_duplicate,
)
from sirm.domain.errors import EmptyNameError, NegativeQuantityError, NotFoundError, ValidationError
from sirm.domain.identity import canonical, normalize_units, validate_size
from sirm.domain.models import BulkStock, InventoryCounter, Product, SerializedStock, SessionContext, UnitIdentity
from sirm.repositories.contracts import CatalogRepository
from sirm.services.auth_service import AuthService

log = logging.getLogger("sirm.catalog")


class CatalogService:
    def __init__(self, repo: CatalogRepository, auth: AuthService | None = None):
        self.repo = repo
        self.auth = auth or AuthService()

    def list_products(self, ctx: SessionContext) -> list[Product]:
        return self.repo.list_products(ctx.store_id)

    def get_product(self, ctx: SessionContext, product_id: int) -> Product:
        p = self.repo.get_product(ctx.store_id, int(product_id))
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def inventory_counter(self, ctx: SessionContext, product_id: int) -> Optional[InventoryCounter]:
        return self.repo.get_inventory_counter(ctx.store_id, int(product_id))

    def duplicate_scope(self, ctx: SessionContext, in_form_units: Iterable[str] = ()) -> DuplicateScope:
        return DuplicateScope.build(
            in_form_units=in_form_units,
            catalog_units=self.repo.list_registered_units(ctx.store_id),
            historical_sold_ids=self.repo.list_sold_device_ids(ctx.store_id),
        )

    def check_identifier(
        self,
        ctx: SessionContext,
        candidate: str,
        in_form_units: Iterable[str] = (),
        purpose: str = REGISTER,
    ) -> Optional[Conflict]:
        """Scan/keystroke check, run before the id is accepted into a form."""
        return check_duplicate(candidate, self.duplicate_scope(ctx, in_form_units), purpose)

    @staticmethod
    def _clean_header(name: str, purchase_price: float, selling_price: float) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise EmptyNameError("Product name is required.")
        if purchase_price < 0 or selling_price < 0:
            raise ValidationError("Prices must be >= 0.")
        return cleaned

    def create_bulk(
        self,
        ctx: SessionContext,
        name: str,
        quantity: int,
        purchase_price: float = 0.0,
        selling_price: float = 0.0,
        supplier: Optional[str] = None,
        generic_code: Optional[str] = None,
        size: Optional[str] = None,
        description: Optional[str] = None,
    ) -> int:
        self.auth.require_action(ctx, "create_product")
        cleaned = self._clean_header(name, purchase_price, selling_price)
        if int(quantity) < 0:
            raise NegativeQuantityError("Quantity must be >= 0.")

        variant = BulkStock(
            quantity=int(quantity),
            generic_code=(generic_code or "").strip() or None,
            size=validate_size(size),
        )
        pid = self.repo.add_product(
            ctx.store_id, cleaned, float(purchase_price), float(selling_price), supplier, description, variant
        )
        log.info("product_created product_id=%s kind=bulk qty=%s store=%s", pid, variant.quantity, ctx.store_id)
        return pid

    def create_serialized(
        self,
        ctx: SessionContext,
        name: str,
        units: Iterable[UnitIdentity | str],
        purchase_price: float = 0.0,
        selling_price: float = 0.0,
        supplier: Optional[str] = None,
        description: Optional[str] = None,
    ) -> int:
        self.auth.require_action(ctx, "create_product")
        cleaned = self._clean_header(name, purchase_price, selling_price)
        units = normalize_units(units)
        if not units:
            raise ValidationError("At least one device ID is required.")

        assert_no_duplicates([u.device_id for u in units], self.duplicate_scope(ctx))

        pid = self.repo.add_product(
            ctx.store_id,
            cleaned,
            float(purchase_price),
            float(selling_price),
            supplier,
            description,
            SerializedStock(units=tuple(units)),
        )
        log.info("product_created product_id=%s kind=serialized units=%s store=%s", pid, len(units), ctx.store_id)
        return pid

    def restock_bulk(self, ctx: SessionContext, product_id: int, delta: int) -> None:
        self.auth.require_action(ctx, "restock_product")
        if int(delta) < 0:
            raise NegativeQuantityError("Restock quantity must be >= 0.")
        product = self.get_product(ctx, product_id)
        if product.is_serialized:
            raise ValidationError("Serialized products are restocked by adding device IDs.")
        if int(delta) == 0:
            return
        self.repo.restock_bulk(ctx.store_id, product.id, int(delta))
        log.info("product_restocked product_id=%s delta=%s actor=%s", product.id, delta, ctx.user.id)

    def append_serial_units(self, ctx: SessionContext, product_id: int, new_units: Iterable[UnitIdentity | str]) -> int:
        self.auth.require_action(ctx, "restock_product")
        product = self.get_product(ctx, product_id)
        if not product.is_serialized:
            raise ValidationError("Bulk products are restocked by quantity.")
        units = normalize_units(new_units)
        if not units:
            return 0

        # existing units are part of the registry, so the catalog scope covers them
        assert_no_duplicates([u.device_id for u in units], self.duplicate_scope(ctx))

        self.repo.append_units(ctx.store_id, product.id, units)
        log.info("serials_appended product_id=%s added=%s actor=%s", product.id, len(units), ctx.user.id)
        return len(units)

    def remove_serial_units(self, ctx: SessionContext, product_id: int, device_ids: Iterable[str]) -> int:
        self.auth.require_action(ctx, "edit_serials")
        product = self.get_product(ctx, product_id)
        if not isinstance(product.variant, SerializedStock):
            raise ValidationError("Only serialized products have device IDs.")
        wanted = [d for d in device_ids if canonical(d)]
        known = {canonical(d) for d in product.variant.device_ids}
        missing = [d for d in wanted if canonical(d) not in known]
        if missing:
            raise NotFoundError(f"Device IDs not on this product: {', '.join(missing)}")
        removed = self.repo.remove_units(ctx.store_id, product.id, wanted)
        log.warning("serials_removed product_id=%s removed=%s actor=%s", product.id, removed, ctx.user.id)
        return removed

    def delete_product(self, ctx: SessionContext, product_id: int) -> None:
        self.auth.require_action(ctx, "delete_product")
        removed = self.repo.deactivate_product(ctx.store_id, int(product_id))
        if not removed:
            raise NotFoundError("Product not found.")
        log.warning("product_deleted product_id=%s actor=%s", product_id, ctx.user.id)
