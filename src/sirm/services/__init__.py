from .auth_service import AuthService
from .catalog_service import CatalogService
from .import_service import ImportService
from .reconciliation_service import ReconciliationService
from .returns_board import ReturnsBoard
from .returns_ledger import ReturnsLedger
from .returns_locator import ReturnsLocator

__all__ = [
    "AuthService",
    "CatalogService",
    "ImportService",
    "ReconciliationService",
    "ReturnsBoard",
    "ReturnsLedger",
    "ReturnsLocator",
]
