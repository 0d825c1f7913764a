from __future__ import annotations


class InventoryError(Exception):
    """Base error for the inventory engine.

    Every subclass carries the HTTP status the routers answer with, so the
    service layer stays free of web concerns.
    """

    status_code = 400
    default_message = 'Inventory error'

    def __init__(self, message: str | None = None, code: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.code:
            return f'[{self.code}] {self.message}'
        return self.message

    def to_dict(self) -> dict:
        error = {'error': self.__class__.__name__, 'message': self.message}
        if self.code:
            error['code'] = self.code
        if self.details:
            error['details'] = self.details
        return error


class InsufficientStock(InventoryError):
    """Requested quantity exceeds what the stock record can give. Recoverable."""

    status_code = 409
    default_message = 'Insufficient stock'


class InvalidReservationState(InventoryError):
    """Consume/release of a reservation that is no longer active."""

    status_code = 409
    default_message = 'Reservation is not active'


class DuplicateReference(InventoryError):
    """A ledger entry for the same reference already exists (retried caller)."""

    status_code = 409
    default_message = 'Duplicate ledger reference'

    def __init__(self, message: str | None = None, code: str | None = None, details: dict | None = None, existing_id: int | None = None):
        super().__init__(message, code, details)
        self.existing_id = existing_id


class InvalidTransition(InventoryError):
    status_code = 409
    default_message = 'Invalid state transition'


class LockTimeout(InventoryError):
    """Lock contention; safe to retry with backoff."""

    status_code = 503
    default_message = 'Timed out waiting for stock lock'


class NotFound(InventoryError):
    status_code = 404
    default_message = 'Not found'


class AlreadyAcknowledged(InventoryError):
    status_code = 409
    default_message = 'Alert already acknowledged'
