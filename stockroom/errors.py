"""Error taxonomy shared by the inventory services.

Precondition failures raised inside a transaction body abort that transaction
and reach the caller unchanged; they are never retried. Store failures are
reported as :class:`StoreUnavailableError` so callers can offer a retry.
"""

from __future__ import annotations


class StockroomError(Exception):
    """Base class for every error raised by the inventory engine."""


class ValidationError(StockroomError, ValueError):
    """Raised when a draft or patch carries a bad or missing field."""


class ItemIdCollisionError(StockroomError):
    def __init__(self, item_id: str):
        super().__init__(f"An item with id '{item_id}' already exists.")
        self.item_id = item_id


class LocationError(StockroomError, ValueError):
    pass


class OutOfRangeError(LocationError):
    def __init__(self, field: str, value: object, low: int, high: int):
        super().__init__(f"{field.capitalize()} {value!r} is outside {low}-{high}.")
        self.field = field
        self.value = value
        self.low = low
        self.high = high


class UnparseableLocationError(LocationError):
    def __init__(self, value: object):
        super().__init__(f"Could not parse location {value!r}.")
        self.value = value


class TransactionRejectedError(StockroomError):
    """A checkout or return precondition failed at transaction time."""


class ItemNotFoundError(TransactionRejectedError):
    def __init__(self, item_id: str):
        super().__init__(f"Item '{item_id}' not found.")
        self.item_id = item_id


class InsufficientStockError(TransactionRejectedError):
    def __init__(self, item_id: str, requested: int, available: int):
        super().__init__(
            f"Only {available} of '{item_id}' available in stock; {requested} requested."
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available


class NoActiveCheckoutError(TransactionRejectedError):
    def __init__(self, user_id: str, item_id: str):
        super().__init__(f"No checked-out record for '{item_id}' held by '{user_id}'.")
        self.user_id = user_id
        self.item_id = item_id


class ExcessReturnError(TransactionRejectedError):
    def __init__(self, item_id: str, requested: int, checked_out: int):
        super().__init__(
            f"Cannot return {requested} of '{item_id}'. Only {checked_out} checked out."
        )
        self.item_id = item_id
        self.requested = requested
        self.checked_out = checked_out


class StoreUnavailableError(StockroomError, RuntimeError):
    """The backing store could not complete the request; try again."""


class TransactionConflictError(StoreUnavailableError):
    def __init__(self, label: str, attempts: int):
        super().__init__(
            f"Transaction '{label}' kept conflicting with concurrent writers "
            f"after {attempts} attempts."
        )
        self.label = label
        self.attempts = attempts
