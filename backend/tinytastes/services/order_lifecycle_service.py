# Overview: Order state machine; legal status transitions and the stock side effects they carry.

"""
Tiny Tastes Order Lifecycle

================================================================================
STATE MACHINE:
    PENDING -> CONFIRMED -> PREPARING -> READY -> OUT_FOR_DELIVERY -> DELIVERED
    any non-terminal state -> CANCELLED

    (none)            -> PENDING     order placed       reserve stock
    PENDING           -> CONFIRMED   payment received   commit stock
    PENDING           -> CANCELLED   timeout / cancel   release stock
    CONFIRMED..OFD    -> CANCELLED   admin cancel       release only if still
                                                        reserved; committed
                                                        stock needs a separate
                                                        restock decision
    OUT_FOR_DELIVERY  -> DELIVERED   delivery confirmed none

CLAIM STATES (internal):
    CONFIRMING, CANCELLING

    A transition with a stock side effect first moves the order into its
    claim state with a conditional update. Only the caller that wins the
    claim runs the side effect, then moves the order to the target state. If
    the side effect fails, the claim is reverted and the error propagates.
    This makes payment confirmation, admin cancel and the timeout sweep safe
    to race against each other.

RULES:
1. DELIVERED and CANCELLED are terminal.
2. Invalid transitions raise InvalidTransitionError and change nothing.
3. A reservation is released at most once (Order.stock_state).
4. Notification failures never roll back a transition.
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..errors import (
    AlreadyProcessedError,
    InvalidTransitionError,
    OrderNotFoundError,
)
from ..models import Order
from ..time_utils import utcnow
from . import notification_service as notifications
from .notification_service import NotificationDispatcher, LoggingNotificationDispatcher
from .repositories import OrderRepository
from .reservation_service import ReservationManager


logger = logging.getLogger(__name__)


PENDING = "PENDING"
CONFIRMING = "CONFIRMING"
CONFIRMED = "CONFIRMED"
PREPARING = "PREPARING"
READY = "READY"
OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
DELIVERED = "DELIVERED"
CANCELLING = "CANCELLING"
CANCELLED = "CANCELLED"

PUBLIC_STATUSES = (PENDING, CONFIRMED, PREPARING, READY, OUT_FOR_DELIVERY, DELIVERED, CANCELLED)
CLAIM_STATUSES = frozenset({CONFIRMING, CANCELLING})

# Orders in these states still owe payment.
AWAITING_PAYMENT_STATUSES = frozenset({PENDING})

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({PREPARING, CANCELLED}),
    PREPARING: frozenset({READY, CANCELLED}),
    READY: frozenset({OUT_FOR_DELIVERY, CANCELLED}),
    OUT_FOR_DELIVERY: frozenset({DELIVERED, CANCELLED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
}

# Cancellation reasons
REASON_PAYMENT_TIMEOUT = "payment_timeout"
REASON_CUSTOMER = "customer_cancelled"
REASON_ADMIN = "admin_cancelled"
REASON_UNPAID = "payment_not_received"

STOCK_RESERVED = "RESERVED"
STOCK_COMMITTED = "COMMITTED"
STOCK_RELEASED = "RELEASED"


def can_transition(from_status: str, to_status: str) -> bool:
    """True if the public state machine allows from_status -> to_status."""
    return to_status in TRANSITIONS.get(from_status, frozenset())


@dataclass
class TransitionResult:
    order: Order
    from_status: str
    to_status: str
    stock_released: bool = False
    stock_committed: bool = False
    notified: bool = False

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "from_status": self.from_status,
            "to_status": self.to_status,
            "stock_released": self.stock_released,
            "stock_committed": self.stock_committed,
            "notified": self.notified,
        }


class OrderStateMachine:
    def __init__(
        self,
        orders: OrderRepository,
        reservations: ReservationManager,
        *,
        notifier: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._orders = orders
        self._reservations = reservations
        self._notifier = notifier or LoggingNotificationDispatcher()
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def next_order_number(self, prefix: str) -> str:
        return self._orders.next_order_number(prefix)

    def place(self, order: Order) -> Order:
        """
        (none) -> PENDING: reserve the order's stock, then persist it.

        Raises InsufficientStockError (nothing reserved, nothing stored). If
        storing fails after the reservation, the reservation is released.
        """
        if not order.items:
            raise ValueError("order must contain at least one item")

        self._reservations.reserve_for_order(order.items)

        order.status = PENDING
        order.payment_status = order.payment_status or "PENDING"
        order.stock_state = STOCK_RESERVED
        try:
            self._orders.add(order)
        except Exception:
            logger.exception("Persisting order %s failed; releasing its reservation", order.order_number)
            self._reservations.release_for_order(order.items)
            raise

        logger.info(
            "Order placed id=%s number=%s total_cents=%s due=%s",
            order.id, order.order_number, order.total_cents, order.payment_due_date,
        )
        return order

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def get(self, order_id: int) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", details={"order_id": order_id})
        return order

    def transition(self, order_id: int, to_status: str, *, reason: str | None = None) -> TransitionResult:
        """Move an order to to_status, running that transition's side effect."""
        if to_status == CONFIRMED:
            return self.confirm_payment(order_id)
        if to_status == CANCELLED:
            return self.cancel(order_id, reason=reason or REASON_ADMIN)

        order = self.get(order_id)
        from_status = order.status
        self._check(order, from_status, to_status)

        changes = {}
        if to_status == DELIVERED:
            changes["delivered_at"] = self._clock()
        if not self._orders.compare_and_set_status(order_id, {from_status}, to_status, **changes):
            raise AlreadyProcessedError(
                "Order status changed concurrently",
                details={"order_id": order_id, "expected_status": from_status},
            )

        order = self.get(order_id)
        logger.info("Order %s moved %s -> %s", order_id, from_status, to_status)
        notified = False
        if to_status in (OUT_FOR_DELIVERY, DELIVERED):
            notified = self._notifier.dispatch(notifications.DELIVERY_UPDATE, order, status=to_status)
        return TransitionResult(order, from_status, to_status, notified=notified)

    def confirm_payment(self, order_id: int) -> TransitionResult:
        """PENDING -> CONFIRMED: payment received, reserved stock is consumed."""
        order = self.get(order_id)
        from_status = order.status
        self._check(order, from_status, CONFIRMED)

        self._claim(order_id, from_status, CONFIRMING)
        try:
            self._reservations.commit_for_order(order.items)
        except Exception:
            self._orders.compare_and_set_status(order_id, {CONFIRMING}, from_status)
            raise

        now = self._clock()
        self._orders.compare_and_set_status(
            order_id,
            {CONFIRMING},
            CONFIRMED,
            payment_status="PAID",
            paid_at=now,
            stock_state=STOCK_COMMITTED,
        )
        order = self.get(order_id)
        logger.info("Order %s paid and confirmed; stock committed", order_id)
        notified = self._notifier.dispatch(notifications.ORDER_CONFIRMED, order)
        return TransitionResult(order, from_status, CONFIRMED, stock_committed=True, notified=notified)

    def cancel(
        self,
        order_id: int,
        *,
        reason: str,
        payment_status: str | None = None,
        only_if_status: str | None = None,
    ) -> TransitionResult:
        """
        Any non-terminal state -> CANCELLED.

        Reserved stock is released; committed stock is left alone (restocking
        a paid order is a separate admin decision).

        only_if_status narrows the claim: if the order is no longer in that
        state, AlreadyProcessedError is raised and nothing happens.
        """
        order = self.get(order_id)
        from_status = order.status
        if only_if_status is not None and from_status != only_if_status:
            raise AlreadyProcessedError(
                "Order is no longer in the expected state",
                details={"order_id": order_id, "expected_status": only_if_status, "status": from_status},
            )
        self._check(order, from_status, CANCELLED)

        self._claim(order_id, from_status, CANCELLING)
        # Re-read after the claim: stock_state cannot change while we hold it.
        order = self.get(order_id)
        released = False
        stock_state = order.stock_state
        if stock_state == STOCK_RESERVED:
            try:
                self._reservations.release_for_order(order.items)
            except Exception:
                self._orders.compare_and_set_status(order_id, {CANCELLING}, from_status)
                raise
            released = True
            stock_state = STOCK_RELEASED
        elif stock_state == STOCK_COMMITTED:
            logger.warning(
                "Order %s cancelled after stock was committed; restock requires a separate decision",
                order_id,
            )

        changes = {
            "cancellation_reason": reason,
            "cancelled_at": self._clock(),
            "stock_state": stock_state,
        }
        if payment_status is not None:
            changes["payment_status"] = payment_status
        self._orders.compare_and_set_status(order_id, {CANCELLING}, CANCELLED, **changes)

        order = self.get(order_id)
        logger.info("Order %s cancelled from %s reason=%s released=%s", order_id, from_status, reason, released)
        notified = self._notifier.dispatch(notifications.ORDER_CANCELLED, order, reason=reason)
        return TransitionResult(order, from_status, CANCELLED, stock_released=released, notified=notified)

    def apply_payment_status(self, order_id: int, payment_status: str) -> TransitionResult:
        """
        Admin payment update.

        PAID confirms the order; UNPAID and EXPIRED cancel it and release stock.
        """
        if payment_status == "PAID":
            return self.confirm_payment(order_id)
        if payment_status == "UNPAID":
            return self.cancel(order_id, reason=REASON_UNPAID, payment_status="UNPAID")
        if payment_status == "EXPIRED":
            return self.cancel(order_id, reason=REASON_PAYMENT_TIMEOUT, payment_status="EXPIRED")
        raise ValueError("payment_status must be one of: EXPIRED, PAID, UNPAID")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check(self, order: Order, from_status: str, to_status: str) -> None:
        if from_status in CLAIM_STATUSES:
            raise AlreadyProcessedError(
                "Order is being processed",
                details={"order_id": order.id, "status": from_status},
            )
        if not can_transition(from_status, to_status):
            raise InvalidTransitionError(
                f"Cannot move order from {from_status} to {to_status}",
                details={"order_id": order.id, "from_status": from_status, "to_status": to_status},
            )

    def _claim(self, order_id: int, from_status: str, claim_status: str) -> None:
        if not self._orders.compare_and_set_status(order_id, {from_status}, claim_status):
            raise AlreadyProcessedError(
                "Order was claimed by another operation",
                details={"order_id": order_id, "expected_status": from_status},
            )
