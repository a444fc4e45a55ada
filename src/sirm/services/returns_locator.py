from __future__ import annotations

import logging
from typing import Optional

from sirm.domain.errors import NoMatchingUnitsError, ReceiptNotFoundError, ValidationError
from sirm.domain.expansion import attach_receipt, expand
from sirm.domain.identity import canonical, parse_delimited_ids
from sirm.domain.models import Product, SaleRecord, SessionContext, UnitSaleRecord
from sirm.repositories.contracts import CatalogRepository

log = logging.getLogger("sirm.returns")


class ReturnsLocator:
    def __init__(self, repo: CatalogRepository):
        self.repo = repo

    def _products_for(self, ctx: SessionContext, sales: list[SaleRecord]) -> dict[int, Product]:
        return self.repo.get_products_by_ids(ctx.store_id, [s.product_id for s in sales])

    def find_by_receipt(self, ctx: SessionContext, receipt_code: str) -> list[UnitSaleRecord]:
        code = (receipt_code or "").strip()
        if not code:
            raise ValidationError("Receipt code is required.")
        receipt = self.repo.get_receipt_by_code(ctx.store_id, code)
        if not receipt:
            raise ReceiptNotFoundError(f"No receipt found for ID: {code}")

        sales = self.repo.list_sales_for_group(ctx.store_id, receipt.sale_group_id)
        products = self._products_for(ctx, sales)

        out: list[UnitSaleRecord] = []
        for sale in sales:
            product = products.get(sale.product_id)
            if product is None:
                log.warning("sale_without_product sale_id=%s product_id=%s", sale.id, sale.product_id)
                continue
            out.extend(attach_receipt(expand(sale, product), receipt))
        log.info("returns_lookup receipt=%s units=%s", code, len(out))
        return out

    def find_by_device_id(self, ctx: SessionContext, query_fragment: str) -> list[UnitSaleRecord]:
        fragment = (query_fragment or "").strip()
        if not fragment:
            raise ValidationError("Device ID is required.")
        needle = canonical(fragment)

        sales = self.repo.search_sales_by_device(ctx.store_id, fragment)
        products = self._products_for(ctx, sales)
        receipts = {
            r.sale_group_id: r
            for r in self.repo.list_receipts_for_groups(ctx.store_id, [s.sale_group_id for s in sales])
        }

        out: list[UnitSaleRecord] = []
        for sale in sorted(sales, key=lambda s: s.id):
            product = products.get(sale.product_id)
            if product is None:
                continue
            # expand the whole line so records match the receipt view exactly, then keep the hits
            units = expand(sale, product)
            if product.is_serialized:
                hits = [u for u in units if u.device_id and needle in canonical(u.device_id)]
            elif any(needle in canonical(t) for t in parse_delimited_ids(sale.device_id_field)):
                hits = units
            else:
                hits = []
            if hits:
                out.extend(attach_receipt(hits, receipts.get(sale.sale_group_id)))

        if not out:
            raise NoMatchingUnitsError(f"No sales found for Product ID: {fragment}")
        log.info("returns_lookup device=%s units=%s", fragment, len(out))
        return out

    def search(
        self,
        ctx: SessionContext,
        receipt_code: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> list[UnitSaleRecord]:
        if receipt_code and receipt_code.strip():
            return self.find_by_receipt(ctx, receipt_code)
        if device_id and device_id.strip():
            return self.find_by_device_id(ctx, device_id)
        return []
