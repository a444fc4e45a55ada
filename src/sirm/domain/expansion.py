from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Optional

from sirm.domain.errors import AmbiguousPricingError
from sirm.domain.identity import parse_delimited_ids
from sirm.domain.models import Product, Receipt, SaleRecord, UnitSaleRecord


def per_unit_amount(sale: SaleRecord) -> tuple[float, bool]:
    """Return (amount, ambiguous) for one unit of the sale.

    unit_price wins when present; otherwise total / quantity. A zero quantity
    with no unit price prices the unit at 0.0 and flags it.
    """
    if sale.unit_price is not None:
        return float(sale.unit_price), False
    qty = int(sale.quantity_sold or 0)
    if qty <= 0:
        return 0.0, True
    return float(sale.total_amount) / qty, False


def expand(sale: SaleRecord, product: Product, strict: bool = False) -> list[UnitSaleRecord]:
    unit_amount, ambiguous = per_unit_amount(sale)
    if ambiguous and strict:
        raise AmbiguousPricingError(f"Sale {sale.id} has no unit price and zero quantity.")

    tokens = parse_delimited_ids(sale.device_id_field) if product.is_serialized else []
    if tokens:
        return [
            UnitSaleRecord(
                composite_id=f"{sale.id}-{token}",
                sale_id=int(sale.id),
                product_id=int(product.id),
                product_name=product.name,
                device_id=token,
                quantity=1,
                unit_price=unit_amount,
                amount=unit_amount,
                is_serialized=True,
                sale_group_id=sale.sale_group_id,
                payment_method=sale.payment_method,
                pricing_ambiguous=ambiguous,
            )
            for token in tokens
        ]

    return [
        UnitSaleRecord(
            composite_id=str(sale.id),
            sale_id=int(sale.id),
            product_id=int(product.id),
            product_name=product.name,
            device_id=None,
            quantity=int(sale.quantity_sold),
            unit_price=unit_amount,
            amount=float(sale.total_amount),
            is_serialized=False,
            sale_group_id=sale.sale_group_id,
            payment_method=sale.payment_method,
            pricing_ambiguous=ambiguous,
        )
    ]


def attach_receipt(records: Iterable[UnitSaleRecord], receipt: Optional[Receipt]) -> list[UnitSaleRecord]:
    if receipt is None:
        return [replace(r, receipt_code="Unknown") for r in records]
    return [
        replace(
            r,
            receipt_id=int(receipt.id),
            receipt_code=receipt.receipt_code,
            customer_name=receipt.customer_name,
            customer_phone=receipt.customer_phone,
        )
        for r in records
    ]
