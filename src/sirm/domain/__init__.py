from .models import (
    BulkStock,
    Product,
    Receipt,
    ReturnRecord,
    SaleRecord,
    SerializedStock,
    SessionContext,
    UnitIdentity,
    UnitSaleRecord,
)
from .errors import (
    BackingStoreError,
    DuplicateIdentifierError,
    EmptyNameError,
    NegativeQuantityError,
    NoMatchingUnitsError,
    NotFoundError,
    ReceiptNotFoundError,
    ValidationError,
)

__all__ = [
    "BulkStock",
    "Product",
    "Receipt",
    "ReturnRecord",
    "SaleRecord",
    "SerializedStock",
    "SessionContext",
    "UnitIdentity",
    "UnitSaleRecord",
    "BackingStoreError",
    "DuplicateIdentifierError",
    "EmptyNameError",
    "NegativeQuantityError",
    "NoMatchingUnitsError",
    "NotFoundError",
    "ReceiptNotFoundError",
    "ValidationError",
]
