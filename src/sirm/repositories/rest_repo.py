from __future__ import annotations

import logging
from typing import Iterable, Optional

import requests

from sirm.domain.duplicates import RegisteredUnit
from sirm.domain.errors import AppError, BackingStoreError, DuplicateIdentifierError, NotFoundError
from sirm.domain.identity import canonical, decode_units, encode_units, parse_delimited_ids
from sirm.domain.models import (
    BulkStock,
    InventoryCounter,
    Product,
    Receipt,
    ReturnRecord,
    SaleRecord,
    SerializedStock,
    StockVariant,
    UnitIdentity,
)

log = logging.getLogger("sirm.store")

UNIQUE_VIOLATION = "23505"

_RETURN_FIELDS = (
    "id,receipt_id,sale_id,product_name,device_id,qty,amount,remark,status,returned_date,"
    "receipts(receipt_code,customer_name)"
)
_SALE_FIELDS = "id,product_id,quantity,device_id_field,unit_price,amount,sale_group_id,payment_method"


def _in(values: Iterable) -> str:
    quoted = []
    for v in values:
        if isinstance(v, int):
            quoted.append(str(v))
        else:
            quoted.append('"' + str(v).replace('"', '\\"') + '"')
    return f"in.({','.join(quoted)})"


class RestRepository:
    """Hosted (PostgREST-style) backing store.

    Each call is an independent request, so multi-step writes are not atomic;
    the unique key on device_registry is what finally rejects duplicate ids.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, prefer: Optional[str] = None) -> dict:
        h = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            h["Prefer"] = prefer
        return h

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[dict] = None,
        body=None,
        prefer: Optional[str] = None,
    ) -> list[dict]:
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            r = self.session.request(
                method, url, params=params, json=body, headers=self._headers(prefer), timeout=self.timeout
            )
        except requests.RequestException as e:
            log.error("store_request_failed method=%s table=%s error=%s", method, table, e)
            raise BackingStoreError(str(e)) from e

        if r.status_code >= 400:
            try:
                payload = r.json()
            except ValueError:
                payload = {}
            if not isinstance(payload, dict):
                payload = {}
            message = str(payload.get("message") or r.text or f"HTTP {r.status_code}")
            if payload.get("code") == UNIQUE_VIOLATION and table == "device_registry":
                raise DuplicateIdentifierError(f"Device ID already registered: {message}")
            log.error("store_error method=%s table=%s status=%s message=%s", method, table, r.status_code, message)
            raise BackingStoreError(message)

        if not r.content:
            return []
        data = r.json()
        return data if isinstance(data, list) else [data]

    def _select(self, table: str, **params) -> list[dict]:
        return self._request("GET", table, params=params)

    def _insert(self, table: str, rows: list[dict]) -> list[dict]:
        return self._request("POST", table, body=rows, prefer="return=representation")

    def _update(self, table: str, values: dict, **filters) -> list[dict]:
        return self._request("PATCH", table, params=filters, body=values, prefer="return=representation")

    def _delete(self, table: str, **filters) -> list[dict]:
        return self._request("DELETE", table, params=filters, prefer="return=representation")

    # ---------- Products ----------
    @staticmethod
    def _row_to_product(r: dict) -> Product:
        if r.get("is_unique"):
            variant: StockVariant = SerializedStock(units=decode_units(r.get("serialized_ids"), r.get("serialized_sizes")))
        else:
            variant = BulkStock(
                quantity=int(r.get("purchase_qty") or 0),
                generic_code=r.get("device_id"),
                size=r.get("device_size"),
            )
        return Product(
            id=int(r["id"]),
            name=str(r["name"]),
            purchase_price=float(r.get("purchase_price") or 0),
            selling_price=float(r.get("selling_price") or 0),
            supplier=r.get("supplier"),
            description=r.get("description"),
            variant=variant,
            active=1 if r.get("active", True) else 0,
        )

    def add_product(
        self,
        store_id: int,
        name: str,
        purchase_price: float,
        selling_price: float,
        supplier: Optional[str],
        description: Optional[str],
        variant: StockVariant,
    ) -> int:
        row = {
            "store_id": int(store_id),
            "name": name,
            "purchase_price": float(purchase_price),
            "selling_price": float(selling_price),
            "supplier": supplier,
            "description": description,
            "active": True,
        }
        if isinstance(variant, SerializedStock):
            ids_field, sizes_field = encode_units(variant.units)
            row.update(is_unique=True, device_id=None, device_size=None, purchase_qty=len(variant.units),
                       serialized_ids=ids_field, serialized_sizes=sizes_field)
        else:
            row.update(is_unique=False, device_id=variant.generic_code, device_size=variant.size,
                       purchase_qty=int(variant.quantity), serialized_ids=None, serialized_sizes=None)

        created = self._insert("products", [row])
        if not created:
            raise BackingStoreError("Product insert returned no row.")
        pid = int(created[0]["id"])

        try:
            if isinstance(variant, SerializedStock) and variant.units:
                self._register_units(store_id, pid, variant.units)
            self._insert(
                "inventory_counters",
                [{"product_id": pid, "store_id": int(store_id), "available_qty": row["purchase_qty"], "quantity_sold": 0}],
            )
        except AppError:
            # undo the product row so the catalog never holds unregistered ids
            self._discard_product(store_id, pid)
            raise
        return pid

    def _discard_product(self, store_id: int, product_id: int) -> None:
        try:
            self._delete("device_registry", store_id=f"eq.{int(store_id)}", product_id=f"eq.{int(product_id)}")
            self._delete("products", id=f"eq.{int(product_id)}")
        except AppError as e:
            log.error("product_rollback_failed product_id=%s error=%s", product_id, e)

    def _register_units(self, store_id: int, product_id: int, units: Iterable[UnitIdentity]) -> None:
        rows = [
            {"store_id": int(store_id), "device_key": canonical(u.device_id), "device_id": u.device_id, "product_id": int(product_id)}
            for u in units
        ]
        self._insert("device_registry", rows)

    def get_product(self, store_id: int, product_id: int, include_inactive: bool = False) -> Optional[Product]:
        params = {"select": "*", "store_id": f"eq.{int(store_id)}", "id": f"eq.{int(product_id)}"}
        if not include_inactive:
            params["active"] = "eq.true"
        rows = self._select("products", **params)
        return self._row_to_product(rows[0]) if rows else None

    def get_products_by_ids(self, store_id: int, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = sorted({int(i) for i in product_ids})
        if not ids:
            return {}
        rows = self._select("products", select="*", store_id=f"eq.{int(store_id)}", id=_in(ids))
        return {int(r["id"]): self._row_to_product(r) for r in rows}

    def find_product_by_name(self, store_id: int, name: str) -> Optional[Product]:
        wanted = name.strip().lower()
        rows = self._select(
            "products", select="*", store_id=f"eq.{int(store_id)}", active="eq.true", name=f"ilike.{name.strip()}", order="id.asc"
        )
        for r in rows:
            if str(r["name"]).strip().lower() == wanted:
                return self._row_to_product(r)
        return None

    def list_products(self, store_id: int) -> list[Product]:
        rows = self._select("products", select="*", store_id=f"eq.{int(store_id)}", active="eq.true", order="name.asc")
        return [self._row_to_product(r) for r in rows]

    def list_registered_units(self, store_id: int) -> list[RegisteredUnit]:
        rows = self._select(
            "device_registry", select="product_id,device_id", store_id=f"eq.{int(store_id)}", order="product_id.asc"
        )
        products = self.get_products_by_ids(store_id, [r["product_id"] for r in rows])
        return [
            RegisteredUnit(
                product_id=int(r["product_id"]),
                product_name=products[int(r["product_id"])].name if int(r["product_id"]) in products else "",
                device_id=str(r["device_id"]),
            )
            for r in rows
        ]

    def list_sold_device_ids(self, store_id: int) -> list[str]:
        rows = self._select(
            "sales", select="product_id,device_id_field", store_id=f"eq.{int(store_id)}", device_id_field="not.is.null"
        )
        products = self.get_products_by_ids(store_id, [r["product_id"] for r in rows])
        out: list[str] = []
        for r in rows:
            p = products.get(int(r["product_id"]))
            if p is not None and p.is_serialized:
                out.extend(parse_delimited_ids(r.get("device_id_field")))
        return out

    def _serialized_product(self, store_id: int, product_id: int) -> Product:
        product = self.get_product(store_id, product_id)
        if not product:
            raise NotFoundError("Product not found.")
        if not product.is_serialized:
            raise NotFoundError("Product is not serialized.")
        return product

    def _bump_counter(self, store_id: int, product_id: int, delta: int) -> None:
        counter = self.get_inventory_counter(store_id, product_id)
        if counter is None:
            return
        self._update(
            "inventory_counters",
            {"available_qty": max(counter.available_qty + int(delta), 0)},
            product_id=f"eq.{int(product_id)}",
        )

    def _store_units(self, product_id: int, units: list[UnitIdentity]) -> None:
        ids_field, sizes_field = encode_units(units)
        self._update(
            "products",
            {"serialized_ids": ids_field, "serialized_sizes": sizes_field, "purchase_qty": len(units)},
            id=f"eq.{int(product_id)}",
        )

    def append_units(self, store_id: int, product_id: int, units: list[UnitIdentity]) -> None:
        product = self._serialized_product(store_id, product_id)
        self._register_units(store_id, product.id, units)
        self._store_units(product.id, list(product.variant.units) + list(units))
        self._bump_counter(store_id, product.id, len(units))

    def remove_units(self, store_id: int, product_id: int, device_ids: list[str]) -> int:
        product = self._serialized_product(store_id, product_id)
        keys = {canonical(d) for d in device_ids}
        kept = [u for u in product.variant.units if canonical(u.device_id) not in keys]
        removed = len(product.variant.units) - len(kept)
        if removed == 0:
            return 0
        self._store_units(product.id, kept)
        self._delete(
            "device_registry",
            store_id=f"eq.{int(store_id)}",
            product_id=f"eq.{product.id}",
            device_key=_in(sorted(keys)),
        )
        self._bump_counter(store_id, product.id, -removed)
        return removed

    def restock_bulk(self, store_id: int, product_id: int, delta: int) -> None:
        product = self.get_product(store_id, product_id)
        if not product or product.is_serialized:
            raise NotFoundError("Bulk product not found.")
        self._update("products", {"purchase_qty": product.quantity + int(delta)}, id=f"eq.{product.id}")
        self._bump_counter(store_id, product.id, int(delta))

    def deactivate_product(self, store_id: int, product_id: int) -> bool:
        changed = self._update(
            "products", {"active": False}, store_id=f"eq.{int(store_id)}", id=f"eq.{int(product_id)}", active="eq.true"
        )
        if not changed:
            return False
        self._delete("inventory_counters", product_id=f"eq.{int(product_id)}")
        self._delete("device_registry", store_id=f"eq.{int(store_id)}", product_id=f"eq.{int(product_id)}")
        return True

    def get_inventory_counter(self, store_id: int, product_id: int) -> Optional[InventoryCounter]:
        rows = self._select(
            "inventory_counters",
            select="product_id,available_qty,quantity_sold",
            store_id=f"eq.{int(store_id)}",
            product_id=f"eq.{int(product_id)}",
        )
        if not rows:
            return None
        r = rows[0]
        return InventoryCounter(
            product_id=int(r["product_id"]), available_qty=int(r["available_qty"]), quantity_sold=int(r["quantity_sold"])
        )

    # ---------- Sales ledger ----------
    @staticmethod
    def _row_to_receipt(r: dict) -> Receipt:
        return Receipt(
            id=int(r["id"]),
            sale_group_id=str(r["sale_group_id"]),
            receipt_code=str(r["receipt_code"]),
            customer_name=r.get("customer_name"),
            customer_phone=r.get("customer_phone"),
        )

    @staticmethod
    def _row_to_sale(r: dict) -> SaleRecord:
        return SaleRecord(
            id=int(r["id"]),
            product_id=int(r["product_id"]),
            quantity_sold=int(r.get("quantity") or 0),
            device_id_field=r.get("device_id_field"),
            unit_price=None if r.get("unit_price") is None else float(r["unit_price"]),
            total_amount=float(r.get("amount") or 0),
            sale_group_id=r.get("sale_group_id"),
            payment_method=r.get("payment_method"),
        )

    def get_receipt_by_code(self, store_id: int, receipt_code: str) -> Optional[Receipt]:
        rows = self._select("receipts", select="*", store_id=f"eq.{int(store_id)}", receipt_code=f"eq.{receipt_code}")
        return self._row_to_receipt(rows[0]) if rows else None

    def list_receipts_for_groups(self, store_id: int, sale_group_ids: Iterable[str]) -> list[Receipt]:
        groups = sorted({str(g) for g in sale_group_ids if g})
        if not groups:
            return []
        rows = self._select("receipts", select="*", store_id=f"eq.{int(store_id)}", sale_group_id=_in(groups), order="id.asc")
        return [self._row_to_receipt(r) for r in rows]

    def list_sales_for_group(self, store_id: int, sale_group_id: str) -> list[SaleRecord]:
        rows = self._select(
            "sales", select=_SALE_FIELDS, store_id=f"eq.{int(store_id)}", sale_group_id=f"eq.{sale_group_id}", order="id.asc"
        )
        return [self._row_to_sale(r) for r in rows]

    def search_sales_by_device(self, store_id: int, fragment: str) -> list[SaleRecord]:
        rows = self._select(
            "sales", select=_SALE_FIELDS, store_id=f"eq.{int(store_id)}", device_id_field=f"ilike.*{fragment}*", order="id.asc"
        )
        return [self._row_to_sale(r) for r in rows]

    # ---------- Returns ----------
    @staticmethod
    def _row_to_return(r: dict) -> ReturnRecord:
        receipt = r.get("receipts") or {}
        return ReturnRecord(
            id=int(r["id"]),
            receipt_id=int(r["receipt_id"]),
            sale_id=None if r.get("sale_id") is None else int(r["sale_id"]),
            product_name=str(r.get("product_name") or ""),
            device_id=r.get("device_id"),
            quantity=int(r.get("qty") or 0),
            amount=float(r.get("amount") or 0),
            reason_remark=str(r.get("remark") or ""),
            status=str(r.get("status") or ""),
            returned_date=str(r.get("returned_date") or ""),
            receipt_code=receipt.get("receipt_code"),
            customer_name=receipt.get("customer_name"),
        )

    def insert_returns(self, store_id: int, rows: list[dict]) -> list[int]:
        payload = [{**row, "store_id": int(store_id)} for row in rows]
        created = self._insert("returns", payload)
        return [int(r["id"]) for r in created]

    def get_return(self, store_id: int, return_id: int) -> Optional[ReturnRecord]:
        rows = self._select("returns", select=_RETURN_FIELDS, store_id=f"eq.{int(store_id)}", id=f"eq.{int(return_id)}")
        return self._row_to_return(rows[0]) if rows else None

    def list_returns(self, store_id: int) -> list[ReturnRecord]:
        rows = self._select("returns", select=_RETURN_FIELDS, store_id=f"eq.{int(store_id)}", order="created_at.desc,id.desc")
        return [self._row_to_return(r) for r in rows]

    def list_returns_for_receipt(self, store_id: int, receipt_id: int) -> list[ReturnRecord]:
        rows = self._select(
            "returns", select=_RETURN_FIELDS, store_id=f"eq.{int(store_id)}", receipt_id=f"eq.{int(receipt_id)}", order="id.asc"
        )
        return [self._row_to_return(r) for r in rows]

    def update_return(self, store_id: int, return_id: int, fields: dict) -> bool:
        allowed = {"status", "returned_date", "remark"}
        updates = {k: v for k, v in fields.items() if k in allowed}
        if not updates:
            return False
        changed = self._update("returns", updates, store_id=f"eq.{int(store_id)}", id=f"eq.{int(return_id)}")
        return bool(changed)

    def delete_returns(self, store_id: int, return_ids: Iterable[int]) -> int:
        ids = sorted({int(i) for i in return_ids})
        if not ids:
            return 0
        deleted = self._delete("returns", store_id=f"eq.{int(store_id)}", id=_in(ids))
        return len(deleted)
