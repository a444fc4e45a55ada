import threading
from pathlib import Path

import pytest
from conftest import make_ctx, make_repo
from openpyxl import Workbook, load_workbook

from sirm.domain.errors import (
    AuthorizationError,
    BackingStoreError,
    DuplicateIdentifierError,
    PartialBatchFailure,
    ValidationError,
)
from sirm.domain.models import SerializedStock
from sirm.services.catalog_service import CatalogService
from sirm.services.import_service import COLUMNS, ImportService


def _csv(path: Path, rows) -> Path:
    lines = [",".join(COLUMNS)] + [",".join(r) for r in rows]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _row(name, ids="", sizes="", qty="", purchase="10", selling="20"):
    return [name, "", purchase, selling, "Supplier", ids, sizes, qty]


def _services(tmp_path: Path):
    repo = make_repo(tmp_path)
    catalog = CatalogService(repo)
    return repo, catalog, ImportService(catalog)


def test_existing_name_is_skipped_and_others_inserted(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    ctx = make_ctx()
    catalog.create_bulk(ctx, "Rice 50kg", 5)
    path = _csv(
        tmp_path / "in.csv",
        [_row("Phone X", "IMEI1;IMEI2", "128GB;256GB"), _row("rice 50KG", qty="10"), _row("Sugar", qty="7")],
    )

    report = importer.import_products(ctx, path)

    assert (report.inserted, report.skipped, report.rejected) == (2, 1, 0)
    assert report.skipped_names == ["rice 50KG"]
    phone = repo.find_product_by_name(ctx.store_id, "Phone X")
    assert isinstance(phone.variant, SerializedStock)
    assert [(u.device_id, u.size) for u in phone.variant.units] == [("IMEI1", "128GB"), ("IMEI2", "256GB")]
    assert repo.find_product_by_name(ctx.store_id, "Sugar").quantity == 7


def test_invalid_rows_are_rejected_with_row_numbers(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    path = _csv(
        tmp_path / "in.csv",
        [_row(""), _row("No stock"), _row("Bad price", qty="1", purchase="-1"), _row("Good", qty="1")],
    )

    report = importer.import_products(make_ctx(), path)

    assert (report.inserted, report.rejected) == (1, 3)
    assert report.errors[0].startswith("Row 2:")
    assert any(e.startswith("Row 3:") for e in report.errors)


def test_duplicate_name_inside_file_is_skipped(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    path = _csv(tmp_path / "in.csv", [_row("Sugar", qty="1"), _row("SUGAR", qty="2")])
    report = importer.import_products(make_ctx(), path)
    assert (report.inserted, report.skipped) == (1, 1)


def test_known_identifier_aborts_before_any_write(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    ctx = make_ctx()
    catalog.create_serialized(ctx, "Phone Y", ["IMEI1"])
    path = _csv(tmp_path / "in.csv", [_row("Sugar", qty="3"), _row("Phone X", "imei1;IMEI9")])

    with pytest.raises(DuplicateIdentifierError) as exc:
        importer.import_products(ctx, path)

    assert exc.value.identifiers == ["imei1"]
    assert repo.find_product_by_name(ctx.store_id, "Sugar") is None


def test_identifier_repeated_across_rows_aborts(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    path = _csv(tmp_path / "in.csv", [_row("Phone A", "X1"), _row("Phone B", "x1")])
    with pytest.raises(DuplicateIdentifierError):
        importer.import_products(make_ctx(), path)


def test_cancel_stops_between_rows(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    cancel = threading.Event()
    cancel.set()
    path = _csv(tmp_path / "in.csv", [_row("Sugar", qty="3"), _row("Salt", qty="3")])

    report = importer.import_products(make_ctx(), path, cancel_event=cancel)

    assert report.cancelled
    assert report.inserted == 0


class FailingRepo:
    def __init__(self, inner, fail_after: int):
        self.inner = inner
        self.fail_after = fail_after
        self.calls = 0

    def add_product(self, *args, **kwargs):
        self.calls += 1
        if self.calls > self.fail_after:
            raise BackingStoreError("connection lost")
        return self.inner.add_product(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self.inner, name)


def test_store_failure_reports_partial_batch(tmp_path: Path):
    repo = make_repo(tmp_path)
    importer = ImportService(CatalogService(FailingRepo(repo, fail_after=1)))
    path = _csv(tmp_path / "in.csv", [_row("Sugar", qty="3"), _row("Salt", qty="3"), _row("Flour", qty="3")])

    with pytest.raises(PartialBatchFailure) as exc:
        importer.import_products(make_ctx(), path)

    assert exc.value.report.inserted == 1
    assert exc.value.report.errors == ["Row 3: connection lost"]
    assert repo.find_product_by_name(1, "Sugar") is not None


def test_xlsx_import(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    wb = Workbook()
    ws = wb.active
    ws.append(["Name", "Description", "Purchase Price", "Selling Price", "Suppliers Name", "Device IDs", "Device Sizes", "Purchase Qty"])
    ws.append(["Watch", "Smart", 80000, 120000, "Samsung", "W1;W2", "42mm;46mm", None])
    ws.append(["Rice", None, 25000, 35000, None, None, None, 100])
    path = tmp_path / "in.xlsx"
    wb.save(path)

    report = importer.import_products(make_ctx(), path)

    assert report.inserted == 2
    watch = repo.find_product_by_name(1, "Watch")
    assert watch.variant.device_ids == ["W1", "W2"]
    assert watch.selling_price == 120000.0
    assert repo.find_product_by_name(1, "Rice").quantity == 100


def test_empty_or_unsupported_file(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    empty = tmp_path / "empty.csv"
    empty.write_text(",".join(COLUMNS) + "\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        importer.import_products(make_ctx(), empty)
    with pytest.raises(ValidationError):
        importer.import_products(make_ctx(), tmp_path / "products.txt")


def test_seller_cannot_import(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    path = _csv(tmp_path / "in.csv", [_row("Sugar", qty="1")])
    with pytest.raises(AuthorizationError):
        importer.import_products(make_ctx("seller"), path)


def test_templates_round_trip_through_import(tmp_path: Path):
    xlsx = ImportService.write_import_template(tmp_path / "template.xlsx")
    csv_path = ImportService.write_import_template(tmp_path / "template.csv")

    ws = load_workbook(xlsx).active
    assert [c.value for c in ws[1]] == COLUMNS
    assert csv_path.read_text(encoding="utf-8").splitlines()[0] == ",".join(COLUMNS)

    repo, catalog, importer = _services(tmp_path)
    report = importer.import_products(make_ctx(), csv_path)
    assert report.inserted == 3


def test_non_numeric_prices_reject_the_row(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    path = tmp_path / "in.csv"
    path.write_text(
        ",".join(COLUMNS) + "\n"
        'Phone,,"450,000",abc,S,IMEI9,,\n'
        "Sugar,,10,20,S,,,many\n"
        "Salt,,,,S,,,4\n",
        encoding="utf-8",
    )

    report = importer.import_products(make_ctx(), path)

    assert (report.inserted, report.rejected) == (1, 2)
    assert report.errors[0].startswith("Row 2:") and "purchase_price" in report.errors[0]
    assert report.errors[1].startswith("Row 3:") and "purchase_qty" in report.errors[1]
    assert repo.find_product_by_name(1, "Phone") is None
    salt = repo.find_product_by_name(1, "Salt")
    assert (salt.purchase_price, salt.selling_price) == (0.0, 0.0)


def test_csv_that_is_not_utf8_is_a_validation_error(tmp_path: Path):
    repo, catalog, importer = _services(tmp_path)
    path = tmp_path / "latin1.csv"
    path.write_bytes(b"name,purchase_qty\n\xff\xfeCaf\xe9,3\n")

    with pytest.raises(ValidationError, match="UTF-8"):
        importer.import_products(make_ctx(), path)
