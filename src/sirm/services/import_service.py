from __future__ import annotations

import csv
import logging
import math
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from openpyxl import Workbook, load_workbook

from sirm.domain.duplicates import assert_no_duplicates
from sirm.domain.errors import BackingStoreError, DuplicateIdentifierError, PartialBatchFailure, ValidationError
from sirm.domain.identity import IMPORT_DELIMITER, normalize_units, units_from_fields
from sirm.domain.models import BulkStock, ImportReport, SerializedStock, SessionContext, StockVariant
from sirm.services.catalog_service import CatalogService

log = logging.getLogger("sirm.import")

COLUMNS = [
    "name",
    "description",
    "purchase_price",
    "selling_price",
    "suppliers_name",
    "device_ids",
    "device_sizes",
    "purchase_qty",
]

TEMPLATE_ROWS = [
    ["iPhone 14 Pro", "Black 256GB", "450000", "650000", "Apple Store", "IMEI001;IMEI002", "256GB;256GB", ""],
    ["Samsung Watch", "Smartwatch", "80000", "120000", "Samsung", "WATCH001;WATCH002", "42mm;46mm", ""],
    ["Rice 50kg", "Premium Rice", "25000", "35000", "Rice Mill", "", "", "100"],
]


@dataclass(frozen=True)
class _Draft:
    row_num: int
    name: str
    description: Optional[str]
    purchase_price: float
    selling_price: float
    supplier: Optional[str]
    variant: StockVariant


def _header(value) -> str:
    return "_".join(str(value or "").strip().lower().split())


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _number(raw: str, field: str, default: float = 0.0) -> float:
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValidationError(f"{field} must be a number. Received: {raw}") from e
    if not math.isfinite(value):
        raise ValidationError(f"{field} must be a number. Received: {raw}")
    return value


class ImportService:
    def __init__(self, catalog: CatalogService):
        self.catalog = catalog
        self.repo = catalog.repo

    # ---------- reading ----------
    def read_rows(self, path: str | Path) -> list[dict[str, str]]:
        path = Path(path)
        if path.suffix.lower() == ".xlsx":
            return self._read_xlsx(path)
        if path.suffix.lower() == ".csv":
            return self._read_csv(path)
        raise ValidationError("Please select a .csv or .xlsx file.")

    def _read_csv(self, path: Path) -> list[dict[str, str]]:
        try:
            with path.open(newline="", encoding="utf-8-sig") as fh:
                reader = csv.reader(fh)
                rows = [r for r in reader if any(c.strip() for c in r)]
        except (UnicodeDecodeError, csv.Error) as e:
            log.warning("import_unreadable path=%s error=%s", path.name, e)
            raise ValidationError("Import file must be UTF-8 encoded CSV.") from e
        if len(rows) < 2:
            return []
        headers = [_header(h) for h in rows[0]]
        return [{h: _cell(r[i]) if i < len(r) else "" for i, h in enumerate(headers)} for r in rows[1:]]

    def _read_xlsx(self, path: Path) -> list[dict[str, str]]:
        wb = load_workbook(path, read_only=True, data_only=True)
        try:
            ws = wb.active
            values = [row for row in ws.iter_rows(values_only=True) if any(v not in (None, "") for v in row)]
        finally:
            wb.close()
        if len(values) < 2:
            return []
        headers = [_header(h) for h in values[0]]
        return [{h: _cell(r[i]) if i < len(r) else "" for i, h in enumerate(headers)} for r in values[1:]]

    # ---------- planning ----------
    def _plan(self, ctx: SessionContext, rows: list[dict[str, str]], report: ImportReport) -> list[_Draft]:
        existing = {p.name.strip().lower() for p in self.repo.list_products(ctx.store_id)}
        drafts: list[_Draft] = []

        for i, row in enumerate(rows):
            row_num = i + 2
            name = row.get("name", "").strip()
            if not name:
                report.rejected += 1
                report.errors.append(f"Row {row_num}: Product name is required")
                continue
            if name.lower() in existing:
                report.skipped += 1
                report.skipped_names.append(name)
                continue

            try:
                units = normalize_units(
                    units_from_fields(row.get("device_ids"), row.get("device_sizes"), IMPORT_DELIMITER)
                )
            except ValidationError as e:
                report.rejected += 1
                report.errors.append(f"Row {row_num}: {e}")
                continue

            try:
                purchase_price = _number(row.get("purchase_price", ""), "purchase_price")
                selling_price = _number(row.get("selling_price", ""), "selling_price")
                qty = int(_number(row.get("purchase_qty", ""), "purchase_qty")) if not units else 0
            except ValidationError as e:
                report.rejected += 1
                report.errors.append(f"Row {row_num}: {e}")
                continue

            if units:
                variant: StockVariant = SerializedStock(units=tuple(units))
            else:
                if qty <= 0:
                    report.rejected += 1
                    report.errors.append(f"Row {row_num}: Must have device_ids or valid purchase_qty")
                    continue
                variant = BulkStock(quantity=qty)

            if purchase_price < 0 or selling_price < 0:
                report.rejected += 1
                report.errors.append(f"Row {row_num}: Prices must be >= 0")
                continue

            existing.add(name.lower())
            drafts.append(
                _Draft(
                    row_num=row_num,
                    name=name,
                    description=row.get("description") or None,
                    purchase_price=purchase_price,
                    selling_price=selling_price,
                    supplier=row.get("suppliers_name") or None,
                    variant=variant,
                )
            )
        return drafts

    # ---------- import ----------
    def import_products(
        self,
        ctx: SessionContext,
        path: str | Path,
        cancel_event: threading.Event | None = None,
    ) -> ImportReport:
        """Batch product entry from CSV/XLSX.

        Not transactional: rows written before a cancel or a store failure stay written.
        Any device id already known to the store aborts the batch before the first write.
        """
        self.catalog.auth.require_action(ctx, "import_products")
        rows = self.read_rows(path)
        if not rows:
            raise ValidationError("Import file is empty or invalid.")

        report = ImportReport()
        drafts = self._plan(ctx, rows, report)

        incoming = [
            u.device_id
            for d in drafts
            if isinstance(d.variant, SerializedStock)
            for u in d.variant.units
        ]
        if incoming:
            assert_no_duplicates(incoming, self.catalog.duplicate_scope(ctx))

        for d in drafts:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                log.warning("import_cancelled inserted=%s remaining=%s", report.inserted, len(drafts) - report.inserted)
                break
            try:
                self.repo.add_product(
                    ctx.store_id, d.name, d.purchase_price, d.selling_price, d.supplier, d.description, d.variant
                )
            except DuplicateIdentifierError as e:
                report.rejected += 1
                report.errors.append(f"Row {d.row_num}: {e}")
                continue
            except BackingStoreError as e:
                report.errors.append(f"Row {d.row_num}: {e}")
                log.error("import_interrupted row=%s inserted=%s error=%s", d.row_num, report.inserted, e)
                raise PartialBatchFailure(
                    f"Import stopped at row {d.row_num} after {report.inserted} products: {e}", report
                ) from e
            report.inserted += 1

        log.info(
            "import_finished inserted=%s skipped=%s rejected=%s cancelled=%s store=%s",
            report.inserted, report.skipped, report.rejected, report.cancelled, ctx.store_id,
        )
        return report

    @staticmethod
    def write_import_template(path: str | Path) -> Path:
        path = Path(path)
        if path.suffix.lower() == ".xlsx":
            wb = Workbook()
            ws = wb.active
            ws.title = "Products"
            ws.append(COLUMNS)
            for r in TEMPLATE_ROWS:
                ws.append(r)
            wb.save(path)
            return path
        with path.open("w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh)
            writer.writerow(COLUMNS)
            writer.writerows(TEMPLATE_ROWS)
        return path
