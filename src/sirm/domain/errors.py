from __future__ import annotations


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class DuplicateIdentifierError(ValidationError):
    def __init__(self, message: str, identifiers: list[str] | None = None):
        super().__init__(message)
        self.identifiers = list(identifiers or [])


class NegativeQuantityError(ValidationError):
    pass


class EmptyNameError(ValidationError):
    pass


class ReturnQuantityExceededError(ValidationError):
    pass


class NotFoundError(AppError):
    pass


class ReceiptNotFoundError(NotFoundError):
    pass


class NoMatchingUnitsError(NotFoundError):
    pass


class AmbiguousPricingError(AppError):
    pass


class BackingStoreError(AppError):
    pass


class PartialBatchFailure(AppError):
    def __init__(self, message: str, report):
        super().__init__(message)
        self.report = report


class AuthorizationError(AppError):
    pass
