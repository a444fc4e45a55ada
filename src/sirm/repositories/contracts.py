from __future__ import annotations

from typing import Iterable, Optional, Protocol

from sirm.domain.duplicates import RegisteredUnit
from sirm.domain.models import (
    InventoryCounter,
    Product,
    Receipt,
    ReturnRecord,
    SaleRecord,
    StockVariant,
    UnitIdentity,
)


class CatalogRepository(Protocol):
    # products
    def add_product(
        self,
        store_id: int,
        name: str,
        purchase_price: float,
        selling_price: float,
        supplier: Optional[str],
        description: Optional[str],
        variant: StockVariant,
    ) -> int: ...
    def get_product(self, store_id: int, product_id: int, include_inactive: bool = False) -> Optional[Product]: ...
    def get_products_by_ids(self, store_id: int, product_ids: Iterable[int]) -> dict[int, Product]: ...
    def find_product_by_name(self, store_id: int, name: str) -> Optional[Product]: ...
    def list_products(self, store_id: int) -> list[Product]: ...
    def list_registered_units(self, store_id: int) -> list[RegisteredUnit]: ...
    def list_sold_device_ids(self, store_id: int) -> list[str]: ...
    def append_units(self, store_id: int, product_id: int, units: list[UnitIdentity]) -> None: ...
    def remove_units(self, store_id: int, product_id: int, device_ids: list[str]) -> int: ...
    def restock_bulk(self, store_id: int, product_id: int, delta: int) -> None: ...
    def deactivate_product(self, store_id: int, product_id: int) -> bool: ...
    def get_inventory_counter(self, store_id: int, product_id: int) -> Optional[InventoryCounter]: ...

    # sales ledger (read side)
    def get_receipt_by_code(self, store_id: int, receipt_code: str) -> Optional[Receipt]: ...
    def list_receipts_for_groups(self, store_id: int, sale_group_ids: Iterable[str]) -> list[Receipt]: ...
    def list_sales_for_group(self, store_id: int, sale_group_id: str) -> list[SaleRecord]: ...
    def search_sales_by_device(self, store_id: int, fragment: str) -> list[SaleRecord]: ...

    # returns
    def insert_returns(self, store_id: int, rows: list[dict]) -> list[int]: ...
    def get_return(self, store_id: int, return_id: int) -> Optional[ReturnRecord]: ...
    def list_returns(self, store_id: int) -> list[ReturnRecord]: ...
    def list_returns_for_receipt(self, store_id: int, receipt_id: int) -> list[ReturnRecord]: ...
    def update_return(self, store_id: int, return_id: int, fields: dict) -> bool: ...
    def delete_returns(self, store_id: int, return_ids: Iterable[int]) -> int: ...
