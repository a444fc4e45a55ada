from __future__ import annotations

import shutil
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from sirm.domain.duplicates import RegisteredUnit
from sirm.domain.errors import AppError, BackingStoreError, DuplicateIdentifierError, NotFoundError
from sirm.domain.identity import canonical, decode_units, encode_units, parse_delimited_ids
from sirm.domain.models import (
    RETURN_STATUSES,
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

_PRODUCT_COLS = """
    id, name, purchase_price, selling_price, supplier, description, is_unique,
    device_id, device_size, purchase_qty, serialized_ids, serialized_sizes, active
"""

_SALE_COLS = "id, product_id, quantity, device_id_field, unit_price, amount, sale_group_id, payment_method"

_RETURN_SELECT = """
    SELECT r.id, r.receipt_id, r.sale_id, r.product_name, r.device_id, r.qty, r.amount,
           r.remark, r.status, r.returned_date, rc.receipt_code, rc.customer_name
    FROM returns r
    LEFT JOIN receipts rc ON rc.id = r.receipt_id
"""


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Cursor]:
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute("BEGIN")
            yield cur
            conn.commit()
        except AppError:
            conn.rollback()
            raise
        except sqlite3.Error as exc:
            conn.rollback()
            raise BackingStoreError(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_device_registry),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS products (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            store_id INTEGER NOT NULL,
            name TEXT NOT NULL CHECK(length(trim(name)) > 0),
            description TEXT,
            purchase_price REAL NOT NULL DEFAULT 0 CHECK(purchase_price >= 0),
            selling_price REAL NOT NULL DEFAULT 0 CHECK(selling_price >= 0),
            supplier TEXT,
            is_unique INTEGER NOT NULL DEFAULT 0 CHECK(is_unique IN (0, 1)),
            device_id TEXT,
            device_size TEXT,
            purchase_qty INTEGER NOT NULL DEFAULT 0 CHECK(purchase_qty >= 0),
            serialized_ids TEXT,
            serialized_sizes TEXT,
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS inventory_counters (
            product_id INTEGER PRIMARY KEY,
            store_id INTEGER NOT NULL,
            available_qty INTEGER NOT NULL DEFAULT 0,
            quantity_sold INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(product_id) REFERENCES products(id)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS sales (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            store_id INTEGER NOT NULL,
            product_id INTEGER NOT NULL,
            quantity INTEGER NOT NULL CHECK(quantity >= 0),
            unit_price REAL,
            amount REAL NOT NULL DEFAULT 0,
            device_id_field TEXT,
            sale_group_id TEXT,
            payment_method TEXT,
            sold_at TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY(product_id) REFERENCES products(id)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS receipts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            store_id INTEGER NOT NULL,
            sale_group_id TEXT NOT NULL,
            receipt_code TEXT NOT NULL,
            customer_name TEXT,
            customer_phone TEXT,
            UNIQUE(store_id, receipt_code)
        )
        """
        )

        statuses = ", ".join(f"'{s}'" for s in RETURN_STATUSES)
        cur.execute(
            f"""
        CREATE TABLE IF NOT EXISTS returns (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            store_id INTEGER NOT NULL,
            receipt_id INTEGER NOT NULL,
            sale_id INTEGER,
            product_name TEXT NOT NULL,
            device_id TEXT,
            qty INTEGER NOT NULL CHECK(qty > 0),
            amount REAL NOT NULL DEFAULT 0,
            remark TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL CHECK(status IN ({statuses})),
            returned_date TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY(receipt_id) REFERENCES receipts(id)
        )
        """
        )

    def _migration_v2_device_registry(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS device_registry (
                store_id INTEGER NOT NULL,
                device_key TEXT NOT NULL,
                device_id TEXT NOT NULL,
                product_id INTEGER NOT NULL,
                PRIMARY KEY(store_id, device_key),
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_group ON sales(store_id, sale_group_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_returns_receipt ON returns(store_id, receipt_id)")

        # backfill from rows written before the registry existed
        cur.execute("SELECT id, store_id, serialized_ids FROM products WHERE is_unique=1 AND active=1")
        for pid, store_id, raw_ids in cur.fetchall():
            for device_id in parse_delimited_ids(raw_ids):
                cur.execute(
                    """
                    INSERT OR IGNORE INTO device_registry (store_id, device_key, device_id, product_id)
                    VALUES (?, ?, ?, ?)
                    """,
                    (int(store_id), canonical(device_id), device_id, int(pid)),
                )

    # ---------- Products ----------
    @staticmethod
    def _row_to_product(r) -> Product:
        if int(r[6]):
            variant: StockVariant = SerializedStock(units=decode_units(r[10], r[11]))
        else:
            variant = BulkStock(quantity=int(r[9]), generic_code=r[7], size=r[8])
        return Product(
            id=int(r[0]),
            name=str(r[1]),
            purchase_price=float(r[2]),
            selling_price=float(r[3]),
            supplier=r[4],
            description=r[5],
            variant=variant,
            active=int(r[12]),
        )

    def _register_units(self, cur: sqlite3.Cursor, store_id: int, product_id: int, units: Iterable[UnitIdentity]) -> None:
        collisions: list[str] = []
        for u in units:
            try:
                cur.execute(
                    """
                    INSERT INTO device_registry (store_id, device_key, device_id, product_id)
                    VALUES (?, ?, ?, ?)
                    """,
                    (int(store_id), canonical(u.device_id), u.device_id, int(product_id)),
                )
            except sqlite3.IntegrityError:
                collisions.append(u.device_id)
        if collisions:
            raise DuplicateIdentifierError(
                f"Device IDs already registered: {', '.join(collisions)}", collisions
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
        if isinstance(variant, SerializedStock):
            ids_field, sizes_field = encode_units(variant.units)
            row = (1, None, None, len(variant.units), ids_field, sizes_field)
            qty = len(variant.units)
        else:
            row = (0, variant.generic_code, variant.size, int(variant.quantity), None, None)
            qty = int(variant.quantity)

        with self._tx() as cur:
            cur.execute(
                """
                INSERT INTO products (
                    store_id, name, purchase_price, selling_price, supplier, description,
                    is_unique, device_id, device_size, purchase_qty, serialized_ids, serialized_sizes
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (int(store_id), name, float(purchase_price), float(selling_price), supplier, description, *row),
            )
            pid = int(cur.lastrowid)
            cur.execute(
                "INSERT INTO inventory_counters (product_id, store_id, available_qty, quantity_sold) VALUES (?, ?, ?, 0)",
                (pid, int(store_id), qty),
            )
            if isinstance(variant, SerializedStock):
                self._register_units(cur, store_id, pid, variant.units)
        return pid

    def get_product(self, store_id: int, product_id: int, include_inactive: bool = False) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {_PRODUCT_COLS}
            FROM products
            WHERE store_id=? AND id=? AND (active=1 OR ?)
            """,
            (int(store_id), int(product_id), 1 if include_inactive else 0),
        )
        r = cur.fetchone()
        conn.close()
        return self._row_to_product(r) if r else None

    def get_products_by_ids(self, store_id: int, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = sorted({int(i) for i in product_ids})
        if not ids:
            return {}
        marks = ", ".join("?" for _ in ids)
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {_PRODUCT_COLS} FROM products WHERE store_id=? AND id IN ({marks})",
            (int(store_id), *ids),
        )
        rows = cur.fetchall()
        conn.close()
        return {int(r[0]): self._row_to_product(r) for r in rows}

    def find_product_by_name(self, store_id: int, name: str) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {_PRODUCT_COLS}
            FROM products
            WHERE store_id=? AND active=1 AND lower(trim(name)) = lower(trim(?))
            ORDER BY id
            LIMIT 1
            """,
            (int(store_id), name),
        )
        r = cur.fetchone()
        conn.close()
        return self._row_to_product(r) if r else None

    def list_products(self, store_id: int) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {_PRODUCT_COLS} FROM products WHERE store_id=? AND active=1 ORDER BY name",
            (int(store_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_product(r) for r in rows]

    def list_registered_units(self, store_id: int) -> list[RegisteredUnit]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT d.product_id, p.name, d.device_id
            FROM device_registry d
            JOIN products p ON p.id = d.product_id
            WHERE d.store_id=?
            ORDER BY d.product_id, d.rowid
            """,
            (int(store_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [RegisteredUnit(product_id=int(r[0]), product_name=str(r[1]), device_id=str(r[2])) for r in rows]

    def list_sold_device_ids(self, store_id: int) -> list[str]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT s.device_id_field
            FROM sales s
            JOIN products p ON p.id = s.product_id
            WHERE s.store_id=? AND p.is_unique=1 AND s.device_id_field IS NOT NULL
            """,
            (int(store_id),),
        )
        rows = cur.fetchall()
        conn.close()
        out: list[str] = []
        for (raw,) in rows:
            out.extend(parse_delimited_ids(raw))
        return out

    def _load_serialized_units(self, cur: sqlite3.Cursor, store_id: int, product_id: int) -> list[UnitIdentity]:
        cur.execute(
            "SELECT is_unique, serialized_ids, serialized_sizes FROM products WHERE store_id=? AND id=? AND active=1",
            (int(store_id), int(product_id)),
        )
        row = cur.fetchone()
        if not row:
            raise NotFoundError("Product not found.")
        if not int(row[0]):
            raise NotFoundError("Product is not serialized.")
        return list(decode_units(row[1], row[2]))

    def _store_serialized_units(self, cur: sqlite3.Cursor, product_id: int, units: list[UnitIdentity]) -> None:
        ids_field, sizes_field = encode_units(units)
        cur.execute(
            "UPDATE products SET serialized_ids=?, serialized_sizes=?, purchase_qty=? WHERE id=?",
            (ids_field, sizes_field, len(units), int(product_id)),
        )

    def append_units(self, store_id: int, product_id: int, units: list[UnitIdentity]) -> None:
        with self._tx() as cur:
            existing = self._load_serialized_units(cur, store_id, product_id)
            self._register_units(cur, store_id, product_id, units)
            self._store_serialized_units(cur, product_id, existing + list(units))
            cur.execute(
                "UPDATE inventory_counters SET available_qty = available_qty + ? WHERE product_id=?",
                (len(units), int(product_id)),
            )

    def remove_units(self, store_id: int, product_id: int, device_ids: list[str]) -> int:
        keys = {canonical(d) for d in device_ids}
        with self._tx() as cur:
            existing = self._load_serialized_units(cur, store_id, product_id)
            kept = [u for u in existing if canonical(u.device_id) not in keys]
            removed = len(existing) - len(kept)
            if removed == 0:
                return 0
            self._store_serialized_units(cur, product_id, kept)
            for key in keys:
                cur.execute(
                    "DELETE FROM device_registry WHERE store_id=? AND device_key=? AND product_id=?",
                    (int(store_id), key, int(product_id)),
                )
            cur.execute(
                "UPDATE inventory_counters SET available_qty = MAX(available_qty - ?, 0) WHERE product_id=?",
                (removed, int(product_id)),
            )
        return removed

    def restock_bulk(self, store_id: int, product_id: int, delta: int) -> None:
        with self._tx() as cur:
            cur.execute(
                """
                UPDATE products
                SET purchase_qty = purchase_qty + ?
                WHERE store_id=? AND id=? AND active=1 AND is_unique=0
                """,
                (int(delta), int(store_id), int(product_id)),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Bulk product not found.")
            cur.execute(
                "UPDATE inventory_counters SET available_qty = available_qty + ? WHERE product_id=?",
                (int(delta), int(product_id)),
            )

    def deactivate_product(self, store_id: int, product_id: int) -> bool:
        with self._tx() as cur:
            cur.execute(
                "UPDATE products SET active=0 WHERE store_id=? AND id=? AND active=1",
                (int(store_id), int(product_id)),
            )
            changed = cur.rowcount > 0
            if changed:
                cur.execute("DELETE FROM inventory_counters WHERE product_id=?", (int(product_id),))
                cur.execute(
                    "DELETE FROM device_registry WHERE store_id=? AND product_id=?",
                    (int(store_id), int(product_id)),
                )
        return bool(changed)

    def get_inventory_counter(self, store_id: int, product_id: int) -> Optional[InventoryCounter]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT product_id, available_qty, quantity_sold FROM inventory_counters WHERE store_id=? AND product_id=?",
            (int(store_id), int(product_id)),
        )
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return InventoryCounter(product_id=int(r[0]), available_qty=int(r[1]), quantity_sold=int(r[2]))

    # ---------- Sales ledger (written by the checkout flow) ----------
    def record_sale(
        self,
        store_id: int,
        product_id: int,
        quantity: int,
        amount: float,
        sale_group_id: Optional[str],
        device_id_field: Optional[str] = None,
        unit_price: Optional[float] = None,
        payment_method: Optional[str] = None,
    ) -> int:
        with self._tx() as cur:
            cur.execute(
                """
                INSERT INTO sales (store_id, product_id, quantity, unit_price, amount, device_id_field, sale_group_id, payment_method)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(store_id),
                    int(product_id),
                    int(quantity),
                    None if unit_price is None else float(unit_price),
                    float(amount),
                    device_id_field,
                    sale_group_id,
                    payment_method,
                ),
            )
            sale_id = int(cur.lastrowid)
            cur.execute(
                """
                UPDATE inventory_counters
                SET available_qty = MAX(available_qty - ?, 0), quantity_sold = quantity_sold + ?
                WHERE product_id=?
                """,
                (int(quantity), int(quantity), int(product_id)),
            )
        return sale_id

    def create_receipt(
        self,
        store_id: int,
        sale_group_id: str,
        receipt_code: str,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
    ) -> int:
        with self._tx() as cur:
            cur.execute(
                """
                INSERT INTO receipts (store_id, sale_group_id, receipt_code, customer_name, customer_phone)
                VALUES (?, ?, ?, ?, ?)
                """,
                (int(store_id), sale_group_id, receipt_code, customer_name, customer_phone),
            )
            return int(cur.lastrowid)

    @staticmethod
    def _row_to_receipt(r) -> Receipt:
        return Receipt(id=int(r[0]), sale_group_id=str(r[1]), receipt_code=str(r[2]), customer_name=r[3], customer_phone=r[4])

    @staticmethod
    def _row_to_sale(r) -> SaleRecord:
        return SaleRecord(
            id=int(r[0]),
            product_id=int(r[1]),
            quantity_sold=int(r[2]),
            device_id_field=r[3],
            unit_price=None if r[4] is None else float(r[4]),
            total_amount=float(r[5]),
            sale_group_id=r[6],
            payment_method=r[7],
        )

    def get_receipt_by_code(self, store_id: int, receipt_code: str) -> Optional[Receipt]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, sale_group_id, receipt_code, customer_name, customer_phone
            FROM receipts
            WHERE store_id=? AND receipt_code=?
            """,
            (int(store_id), receipt_code),
        )
        r = cur.fetchone()
        conn.close()
        return self._row_to_receipt(r) if r else None

    def list_receipts_for_groups(self, store_id: int, sale_group_ids: Iterable[str]) -> list[Receipt]:
        groups = sorted({str(g) for g in sale_group_ids if g})
        if not groups:
            return []
        marks = ", ".join("?" for _ in groups)
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT id, sale_group_id, receipt_code, customer_name, customer_phone
            FROM receipts
            WHERE store_id=? AND sale_group_id IN ({marks})
            ORDER BY id
            """,
            (int(store_id), *groups),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_receipt(r) for r in rows]

    def list_sales_for_group(self, store_id: int, sale_group_id: str) -> list[SaleRecord]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {_SALE_COLS} FROM sales WHERE store_id=? AND sale_group_id=? ORDER BY id",
            (int(store_id), sale_group_id),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_sale(r) for r in rows]

    def search_sales_by_device(self, store_id: int, fragment: str) -> list[SaleRecord]:
        escaped = fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {_SALE_COLS}
            FROM sales
            WHERE store_id=? AND device_id_field LIKE ? ESCAPE '\\'
            ORDER BY id
            """,
            (int(store_id), f"%{escaped}%"),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_sale(r) for r in rows]

    # ---------- Returns ----------
    @staticmethod
    def _row_to_return(r) -> ReturnRecord:
        return ReturnRecord(
            id=int(r[0]),
            receipt_id=int(r[1]),
            sale_id=None if r[2] is None else int(r[2]),
            product_name=str(r[3]),
            device_id=r[4],
            quantity=int(r[5]),
            amount=float(r[6]),
            reason_remark=str(r[7] or ""),
            status=str(r[8]),
            returned_date=str(r[9]),
            receipt_code=r[10],
            customer_name=r[11],
        )

    def insert_returns(self, store_id: int, rows: list[dict]) -> list[int]:
        ids: list[int] = []
        with self._tx() as cur:
            for row in rows:
                cur.execute(
                    """
                    INSERT INTO returns (store_id, receipt_id, sale_id, product_name, device_id, qty, amount, remark, status, returned_date)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        int(store_id),
                        int(row["receipt_id"]),
                        row.get("sale_id"),
                        row["product_name"],
                        row.get("device_id"),
                        int(row["qty"]),
                        float(row["amount"]),
                        row.get("remark", ""),
                        row["status"],
                        row["returned_date"],
                    ),
                )
                ids.append(int(cur.lastrowid))
        return ids

    def get_return(self, store_id: int, return_id: int) -> Optional[ReturnRecord]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"{_RETURN_SELECT} WHERE r.store_id=? AND r.id=?", (int(store_id), int(return_id)))
        r = cur.fetchone()
        conn.close()
        return self._row_to_return(r) if r else None

    def list_returns(self, store_id: int) -> list[ReturnRecord]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"{_RETURN_SELECT} WHERE r.store_id=? ORDER BY r.created_at DESC, r.id DESC",
            (int(store_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_return(r) for r in rows]

    def list_returns_for_receipt(self, store_id: int, receipt_id: int) -> list[ReturnRecord]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"{_RETURN_SELECT} WHERE r.store_id=? AND r.receipt_id=? ORDER BY r.id",
            (int(store_id), int(receipt_id)),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_return(r) for r in rows]

    def update_return(self, store_id: int, return_id: int, fields: dict) -> bool:
        allowed = {"status", "returned_date", "remark"}
        updates = {k: v for k, v in fields.items() if k in allowed}
        if not updates:
            return False
        assignments = ", ".join(f"{k}=?" for k in updates)
        with self._tx() as cur:
            cur.execute(
                f"UPDATE returns SET {assignments} WHERE store_id=? AND id=?",
                (*updates.values(), int(store_id), int(return_id)),
            )
            changed = cur.rowcount > 0
        return bool(changed)

    def delete_returns(self, store_id: int, return_ids: Iterable[int]) -> int:
        ids = sorted({int(i) for i in return_ids})
        if not ids:
            return 0
        marks = ", ".join("?" for _ in ids)
        with self._tx() as cur:
            cur.execute(f"DELETE FROM returns WHERE store_id=? AND id IN ({marks})", (int(store_id), *ids))
            deleted = cur.rowcount
        return int(deleted)

