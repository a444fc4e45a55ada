import pytest

from sirm.domain.errors import AmbiguousPricingError
from sirm.domain.expansion import attach_receipt, expand, per_unit_amount
from sirm.domain.models import BulkStock, Product, Receipt, SaleRecord, SerializedStock, UnitIdentity


def _phone(pid: int = 1) -> Product:
    units = tuple(UnitIdentity(d) for d in ("A1", "A2", "A3"))
    return Product(pid, "Phone X", 50.0, 100.0, "Acme", SerializedStock(units=units))


def _rice(pid: int = 2) -> Product:
    return Product(pid, "Rice 50kg", 20.0, 35.0, None, BulkStock(quantity=100))


def _sale(**kw) -> SaleRecord:
    base = dict(
        id=10,
        product_id=1,
        quantity_sold=3,
        device_id_field="A1, A2, A3",
        unit_price=None,
        total_amount=300.0,
        sale_group_id="G-1",
    )
    base.update(kw)
    return SaleRecord(**base)


def test_serialized_sale_fans_out_one_record_per_unit():
    units = expand(_sale(), _phone())

    assert [u.device_id for u in units] == ["A1", "A2", "A3"]
    assert [u.composite_id for u in units] == ["10-A1", "10-A2", "10-A3"]
    assert all(u.quantity == 1 and u.amount == 100.0 for u in units)
    assert all(u.is_serialized for u in units)


def test_unit_price_wins_over_total_split():
    units = expand(_sale(unit_price=90.0), _phone())
    assert {u.amount for u in units} == {90.0}


def test_bulk_sale_stays_a_single_line():
    sale = _sale(product_id=2, quantity_sold=4, device_id_field=None, total_amount=140.0)
    (line,) = expand(sale, _rice())

    assert line.composite_id == "10"
    assert line.device_id is None
    assert line.quantity == 4
    assert line.amount == 140.0
    assert line.unit_price == 35.0
    assert not line.is_serialized


def test_serialized_product_without_tokens_falls_back_to_line():
    (line,) = expand(_sale(device_id_field=None), _phone())
    assert line.composite_id == "10"
    assert line.quantity == 3


def test_expansion_is_repeatable():
    sale, product = _sale(), _phone()
    assert expand(sale, product) == expand(sale, product)


def test_zero_quantity_without_unit_price_is_flagged():
    sale = _sale(quantity_sold=0, device_id_field=None, total_amount=50.0)
    assert per_unit_amount(sale) == (0.0, True)

    (line,) = expand(sale, _rice())
    assert line.pricing_ambiguous
    assert line.unit_price == 0.0

    with pytest.raises(AmbiguousPricingError):
        expand(sale, _rice(), strict=True)


def test_receipt_is_attached_or_marked_unknown():
    units = expand(_sale(), _phone())
    receipt = Receipt(id=5, sale_group_id="G-1", receipt_code="R-100", customer_name="Ana", customer_phone="555")

    attached = attach_receipt(units, receipt)
    assert {(u.receipt_id, u.receipt_code, u.customer_name) for u in attached} == {(5, "R-100", "Ana")}

    orphaned = attach_receipt(units, None)
    assert {u.receipt_code for u in orphaned} == {"Unknown"}
    assert all(u.receipt_id is None for u in orphaned)
