from datetime import date
from pathlib import Path

import pytest
from conftest import checkout, make_ctx, make_repo

from sirm.domain.errors import (
    AuthorizationError,
    NotFoundError,
    ReturnQuantityExceededError,
    ValidationError,
)
from sirm.domain.models import ReturnDetails
from sirm.services.catalog_service import CatalogService
from sirm.services.returns_ledger import ReturnsLedger
from sirm.services.returns_locator import ReturnsLocator


def _store(tmp_path: Path):
    repo = make_repo(tmp_path)
    ctx = make_ctx()
    catalog = CatalogService(repo)
    phone = catalog.create_serialized(ctx, "Phone X", ["A1", "A2", "A3"], 50.0, 100.0)
    rice = catalog.create_bulk(ctx, "Rice 50kg", 100, 20.0, 35.0)
    checkout(repo, ctx.store_id, "R-100", [(phone, 3, 300.0, "A1,A2,A3"), (rice, 4, 140.0, None, 35.0)], "Ana")
    return repo, ctx, ReturnsLocator(repo), ReturnsLedger(repo)


def _unit(locator, ctx, device_id):
    (unit,) = locator.find_by_device_id(ctx, device_id)
    return unit


def _bulk_line(locator, ctx):
    return [r for r in locator.find_by_receipt(ctx, "R-100") if not r.is_serialized][0]


def test_return_records_unit_and_receipt(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)

    (ret,) = ledger.create(ctx, [_unit(locator, ctx, "A2")], ReturnDetails("Screen cracked", "pending", "2024-03-01"))

    assert ret.device_id == "A2"
    assert ret.quantity == 1
    assert ret.amount == 100.0
    assert ret.status == "Pending"
    assert ret.returned_date == "2024-03-01"
    assert ret.receipt_code == "R-100"
    assert ret.customer_name == "Ana"


def test_same_unit_cannot_be_returned_twice(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)
    unit = _unit(locator, ctx, "A2")
    ledger.create(ctx, [unit], ReturnDetails("Broken"))

    with pytest.raises(ReturnQuantityExceededError):
        ledger.create(ctx, [unit], ReturnDetails("Broken again"))
    with pytest.raises(ReturnQuantityExceededError):
        ledger.create(ctx, [_unit(locator, ctx, "A1"), _unit(locator, ctx, "A1")], ReturnDetails())
    assert len(ledger.list_returns(ctx)) == 1


def test_rejected_return_frees_the_unit(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)
    unit = _unit(locator, ctx, "A2")
    (first,) = ledger.create(ctx, [unit], ReturnDetails("Broken"))
    ledger.update(ctx, first.id, status="Rejected")

    (second,) = ledger.create(ctx, [unit], ReturnDetails("Broken, confirmed"))
    assert second.status == "Pending"

    with pytest.raises(ReturnQuantityExceededError):
        ledger.update(ctx, first.id, status="Approved")


def test_bulk_line_allows_partial_returns_up_to_sold_quantity(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)
    line = _bulk_line(locator, ctx)

    (ret,) = ledger.create(ctx, [line], ReturnDetails("Wet bag"), quantities={line.composite_id: 3})
    assert ret.quantity == 3
    assert ret.amount == 105.0
    assert ret.device_id is None

    with pytest.raises(ReturnQuantityExceededError):
        ledger.create(ctx, [line], ReturnDetails(), quantities={line.composite_id: 2})
    (last,) = ledger.create(ctx, [line], ReturnDetails(), quantities={line.composite_id: 1})
    assert last.amount == 35.0


def test_serialized_unit_quantity_is_one(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)
    unit = _unit(locator, ctx, "A1")
    with pytest.raises(ValidationError):
        ledger.create(ctx, [unit], ReturnDetails(), quantities={unit.composite_id: 2})


def test_invalid_details_are_rejected(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)
    unit = _unit(locator, ctx, "A1")

    with pytest.raises(ValidationError):
        ledger.create(ctx, [unit], ReturnDetails(status="Lost"))
    with pytest.raises(ValidationError):
        ledger.create(ctx, [unit], ReturnDetails(returned_date="03/01/2024"))
    with pytest.raises(ValidationError):
        ledger.create(ctx, [], ReturnDetails())


def test_default_date_is_today(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)
    (ret,) = ledger.create(ctx, [_unit(locator, ctx, "A1")], ReturnDetails())
    assert ret.returned_date == date.today().isoformat()


def test_update_touches_only_status_date_and_remark(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)
    (ret,) = ledger.create(ctx, [_unit(locator, ctx, "A3")], ReturnDetails("Dead pixel", "Pending", "2024-03-01"))

    updated = ledger.update(ctx, ret.id, status="Refunded", returned_date="2024-03-05", reason_remark=" Dead pixels ")

    assert (updated.status, updated.returned_date, updated.reason_remark) == ("Refunded", "2024-03-05", "Dead pixels")
    assert (updated.device_id, updated.quantity, updated.amount) == (ret.device_id, ret.quantity, ret.amount)
    assert ledger.update(ctx, ret.id) == updated


def test_update_and_delete_missing_return(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)
    with pytest.raises(NotFoundError):
        ledger.update(ctx, 999, status="Approved")
    assert ledger.delete(ctx, [999]) == 0


def test_delete_does_not_restock(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)
    unit = _unit(locator, ctx, "A1")
    before = repo.get_inventory_counter(ctx.store_id, unit.product_id)
    (ret,) = ledger.create(ctx, [unit], ReturnDetails("Changed mind"))

    assert ledger.delete(ctx, [ret.id, ret.id]) == 1
    assert ledger.list_returns(ctx) == []
    assert repo.get_inventory_counter(ctx.store_id, unit.product_id) == before


def test_returns_need_permissions(tmp_path: Path):
    repo, ctx, locator, ledger = _store(tmp_path)
    (ret,) = ledger.create(make_ctx("seller", user_id=2), [_unit(locator, ctx, "A1")], ReturnDetails())

    with pytest.raises(AuthorizationError):
        ledger.delete(make_ctx("seller", user_id=2), [ret.id])
    with pytest.raises(AuthorizationError):
        ledger.create(make_ctx("viewer", user_id=3), [_unit(locator, ctx, "A2")], ReturnDetails())
    assert len(ledger.list_returns(make_ctx("viewer", user_id=3))) == 1
