# Overview: Domain errors raised by the stock and order lifecycle services.

"""
All domain errors subclass InventoryError (a ValueError) and carry a
``details`` dict that routes return verbatim next to the message.

Storage failures are NOT wrapped here; SQLAlchemy errors propagate as-is.
"""

from __future__ import annotations


class InventoryError(ValueError):
    """Base class for stock/order business rule violations."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(InventoryError):
    """Requested quantity exceeds available (or reserved, for commits) stock."""


class RestockLimitExceededError(InventoryError):
    """Restock would push the period's total past the entry's weekly limit."""


class InvalidTransitionError(InventoryError):
    """Order status change not permitted by the state machine."""


class OrderNotFoundError(InventoryError):
    pass


class StockEntryNotFoundError(InventoryError):
    pass


class ProductNotFoundError(InventoryError):
    pass


class AlreadyProcessedError(InventoryError):
    """
    Work was already claimed by another caller.

    Raised when an order's status moved underneath a transition, or when a
    payment sweep is already running.
    """


class OrderPlacementError(InventoryError):
    """Order request refers to an unknown customer, address or unpriced/inactive product."""


_HTTP_STATUS = (
    ((OrderNotFoundError, StockEntryNotFoundError, ProductNotFoundError), 404),
    ((InsufficientStockError, RestockLimitExceededError, InvalidTransitionError, AlreadyProcessedError), 409),
)


def http_status_for(error: InventoryError) -> int:
    """HTTP status a route returns for a domain error; 400 unless listed above."""
    for kinds, status in _HTTP_STATUS:
        if isinstance(error, kinds):
            return status
    return 400
