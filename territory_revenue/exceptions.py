"""
Warehouse Errors

Every failed write or malformed query surfaces one of these to the caller.
A failed write never leaves partial state behind.
"""

from typing import Any, Dict, Optional


class WarehouseError(Exception):
    """Base class for all territory revenue warehouse errors."""

    def __init__(self, msg: str, **context: Any):
        self.context: Dict[str, Any] = context
        super().__init__(msg)


class DuplicateKeyError(WarehouseError):
    """Raised when a date key, version key or revenue event id already exists."""


class ConflictError(WarehouseError):
    """Raised when a write would leave an entity with two open versions."""


class NotFoundError(WarehouseError):
    """Raised when no version covers a date or a reference is unknown."""


class InvalidRangeError(WarehouseError):
    """Raised when an interval would end on or before it starts."""


class InvalidAmountError(WarehouseError):
    """Raised when a revenue amount is negative, not a finite number or too large."""

    def __init__(self, field: str, value: Optional[Any]):
        self.field = field
        self.value = value
        super().__init__(f"{field} must be a non-negative amount below 10^13, got {value!r}", field=field, value=value)


class ForeignKeyError(WarehouseError):
    """Raised when a row references a dimension row that does not exist."""


class InvalidQueryError(WarehouseError):
    """Raised when an aggregation or entity request is malformed."""
