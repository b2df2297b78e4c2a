"""Typed errors raised by the stock ledger.

Every error carries a machine-readable ``code``, the HTTP ``status_code`` the
API answers with, and a ``retryable`` flag telling clients whether the same
request may succeed if sent again later:

    StockLedgerError
    +-- ValidationError            VALIDATION_ERROR            400
    +-- AuthenticationError        UNAUTHENTICATED             401
    +-- PermissionDeniedError      FORBIDDEN                   403
    +-- NotFoundError              NOT_FOUND                   404
    +-- AlreadyExistsError         ALREADY_EXISTS              409
    +-- InsufficientStockError     INSUFFICIENT_STOCK          422
    +-- DuplicateReservationError  DUPLICATE_RESERVATION       409
    +-- InventoryInactiveError     INVENTORY_INACTIVE          409
    +-- ReservedStockError         RESERVED_STOCK_OUTSTANDING  409
    +-- StorageError               STORAGE_ERROR               500
    +-- ConcurrencyError
        +-- VersionConflictError   VERSION_CONFLICT   (consumed by the guard)
        +-- ConflictError          CONFLICT                    409, retryable
            +-- LockTimeoutError   LOCK_TIMEOUT                409, retryable
"""

from __future__ import annotations


class StockLedgerError(Exception):
    """Base class for all stock ledger errors."""

    code: str = "STOCK_LEDGER_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(StockLedgerError):
    """Malformed or out-of-range input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationError(StockLedgerError):
    """Missing or undecodable bearer token."""

    code = "UNAUTHENTICATED"
    status_code = 401


class PermissionDeniedError(StockLedgerError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(StockLedgerError):
    """Unknown product or reservation."""

    code = "NOT_FOUND"
    status_code = 404


class AlreadyExistsError(StockLedgerError):
    code = "ALREADY_EXISTS"
    status_code = 409

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Inventory record for product {product_id} already exists")


class InsufficientStockError(StockLedgerError):
    """The operation would break ``0 <= reserved <= on_hand``."""

    code = "INSUFFICIENT_STOCK"
    status_code = 422

    def __init__(self, product_id: str, requested: int, available: int, message: str | None = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            message
            or f"Insufficient stock for product {product_id}: requested={requested}, available={available}"
        )


class DuplicateReservationError(StockLedgerError):
    code = "DUPLICATE_RESERVATION"
    status_code = 409

    def __init__(self, product_id: str, reference: str, message: str | None = None):
        self.product_id = product_id
        self.reference = reference
        super().__init__(message or f"Reservation {reference} already exists for product {product_id}")


class InventoryInactiveError(StockLedgerError):
    code = "INVENTORY_INACTIVE"
    status_code = 409

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Inventory record for product {product_id} is inactive")


class ReservedStockError(StockLedgerError):
    """Deactivation refused while units are still held."""

    code = "RESERVED_STOCK_OUTSTANDING"
    status_code = 409

    def __init__(self, product_id: str, reserved: int):
        self.product_id = product_id
        self.reserved = reserved
        super().__init__(f"Product {product_id} still has {reserved} reserved unit(s)")


class StorageError(StockLedgerError):
    """Underlying persistence failed. Fatal for the request."""

    code = "STORAGE_ERROR"
    status_code = 500


class ConcurrencyError(StockLedgerError):
    code = "CONCURRENCY_ERROR"
    status_code = 409


class VersionConflictError(ConcurrencyError):
    """A compare-and-swap lost against a concurrent writer."""

    code = "VERSION_CONFLICT"

    def __init__(self, product_id: str, expected_version: int | None = None):
        self.product_id = product_id
        self.expected_version = expected_version
        super().__init__(
            f"Inventory record for product {product_id} was modified concurrently"
            + (f" (expected version {expected_version})" if expected_version is not None else "")
        )


class ConflictError(ConcurrencyError):
    """Concurrent modification could not be resolved within the retry bound."""

    code = "CONFLICT"
    retryable = True

    def __init__(self, product_id: str, attempts: int, message: str | None = None):
        self.product_id = product_id
        self.attempts = attempts
        super().__init__(
            message or f"Gave up on product {product_id} after {attempts} conflicting attempt(s); retry later"
        )


class LockTimeoutError(ConflictError):
    code = "LOCK_TIMEOUT"

    def __init__(self, product_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            product_id,
            attempts=0,
            message=f"Timed out after {timeout:.2f}s waiting for exclusive access to product {product_id}",
        )
