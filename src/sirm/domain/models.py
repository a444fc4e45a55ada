from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Union


RETURN_STATUSES = ("Pending", "Approved", "Rejected", "Refunded")


@dataclass(frozen=True)
class User:
    id: int
    username: str
    role: str


@dataclass(frozen=True)
class SessionContext:
    store_id: int
    user: User


@dataclass(frozen=True)
class UnitIdentity:
    device_id: str
    size: Optional[str] = None


@dataclass(frozen=True)
class BulkStock:
    quantity: int
    generic_code: Optional[str] = None
    size: Optional[str] = None


@dataclass(frozen=True)
class SerializedStock:
    units: tuple[UnitIdentity, ...] = ()

    @property
    def device_ids(self) -> list[str]:
        return [u.device_id for u in self.units]


StockVariant = Union[BulkStock, SerializedStock]


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    purchase_price: float
    selling_price: float
    supplier: Optional[str]
    variant: StockVariant
    description: Optional[str] = None
    active: int = 1

    @property
    def is_serialized(self) -> bool:
        return isinstance(self.variant, SerializedStock)

    @property
    def quantity(self) -> int:
        if isinstance(self.variant, SerializedStock):
            return len(self.variant.units)
        return int(self.variant.quantity)


@dataclass(frozen=True)
class InventoryCounter:
    product_id: int
    available_qty: int
    quantity_sold: int


@dataclass(frozen=True)
class SaleRecord:
    id: int
    product_id: int
    quantity_sold: int
    device_id_field: Optional[str]
    unit_price: Optional[float]
    total_amount: float
    sale_group_id: Optional[str]
    payment_method: Optional[str] = None


@dataclass(frozen=True)
class Receipt:
    id: int
    sale_group_id: str
    receipt_code: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


@dataclass(frozen=True)
class UnitSaleRecord:
    composite_id: str
    sale_id: int
    product_id: int
    product_name: str
    device_id: Optional[str]
    quantity: int
    unit_price: float
    amount: float
    is_serialized: bool
    sale_group_id: Optional[str] = None
    payment_method: Optional[str] = None
    receipt_id: Optional[int] = None
    receipt_code: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    pricing_ambiguous: bool = False


@dataclass(frozen=True)
class ReturnDetails:
    reason_remark: str = ""
    status: str = "Pending"
    returned_date: Optional[str] = None


@dataclass(frozen=True)
class ReturnRecord:
    id: int
    receipt_id: int
    sale_id: Optional[int]
    product_name: str
    device_id: Optional[str]
    quantity: int
    amount: float
    reason_remark: str
    status: str
    returned_date: str
    receipt_code: Optional[str] = None
    customer_name: Optional[str] = None


@dataclass(frozen=True)
class ReasonCount:
    reason: str
    count: int


@dataclass(frozen=True)
class ReturnsSummary:
    total_count: int
    total_quantity: int
    total_value: float
    average_value: float
    top_reasons: list[ReasonCount] = field(default_factory=list)
    status_breakdown: dict[str, int] = field(default_factory=dict)


@dataclass
class ImportReport:
    inserted: int = 0
    skipped: int = 0
    rejected: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)
    skipped_names: list[str] = field(default_factory=list)
