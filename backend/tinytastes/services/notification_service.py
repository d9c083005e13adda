"""
Order notification dispatch.

Delivery (email, SMS) is not part of this service; a dispatcher only
receives the event. Calls are fire-and-forget: dispatch() never raises, so a
failing channel cannot undo the order transition that triggered it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from ..models import Order


logger = logging.getLogger(__name__)

ORDER_CONFIRMED = "order_confirmed"
ORDER_CANCELLED = "order_cancelled"
DELIVERY_UPDATE = "delivery_update"
PAYMENT_REMINDER = "payment_reminder"


class NotificationDispatcher(ABC):
    @abstractmethod
    def send(self, event: str, order: Order, **context) -> None:
        ...

    def dispatch(self, event: str, order: Order, **context) -> bool:
        """Send and swallow channel failures (logged). Returns whether it was sent."""
        try:
            self.send(event, order, **context)
        except Exception:
            logger.exception("Notification %s failed for order %s", event, order.id)
            return False
        return True


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Default dispatcher: records the event in the application log."""

    def send(self, event: str, order: Order, **context) -> None:
        logger.info(
            "Notification %s order=%s number=%s status=%s context=%s",
            event, order.id, order.order_number, order.status, context,
        )


class RecordingNotificationDispatcher(NotificationDispatcher):
    """Keeps (event, order_id, context) tuples in memory; handy for tests and dry runs."""

    def __init__(self):
        self.sent: list[tuple[str, int, dict]] = []

    def send(self, event: str, order: Order, **context) -> None:
        self.sent.append((event, order.id, context))

    def events(self) -> list[str]:
        return [event for event, _, _ in self.sent]
