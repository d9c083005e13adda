# Overview: Expires unpaid orders past their payment deadline and releases their stock.

"""
Payment timeout sweeper.

An order placed PENDING holds reserved stock until paid. Once its
payment_due_date passes, sweep() cancels it (reason "payment_timeout",
payment_status EXPIRED) through the state machine, which releases the
reservation.

Safe to run repeatedly:
- Only one sweep runs at a time per sweeper (SingleFlight); an overlapping
  call raises AlreadyProcessedError instead of waiting.
- Each order is claimed PENDING -> CANCELLING before stock is touched, so a
  concurrent payment confirmation or admin cancel wins or loses cleanly.
- Already-cancelled orders are no longer PENDING and are never picked up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from ..errors import AlreadyProcessedError, InventoryError
from ..models import Order
from ..time_utils import to_utc_z, utcnow
from .concurrency import SingleFlight
from .order_lifecycle_service import (
    AWAITING_PAYMENT_STATUSES,
    PENDING,
    REASON_PAYMENT_TIMEOUT,
    OrderStateMachine,
)
from .repositories import OrderRepository


logger = logging.getLogger(__name__)


@dataclass
class SweepEntry:
    order_id: int
    order_number: str
    released: bool = False
    skipped: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "released": self.released,
            "skipped": self.skipped,
            "error": self.error,
        }


@dataclass
class SweepResult:
    swept_at: datetime
    results: list[SweepEntry] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(1 for r in self.results if not r.skipped and r.error is None)

    @property
    def released(self) -> int:
        return sum(1 for r in self.results if r.released)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.error is not None)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    def to_dict(self) -> dict:
        return {
            "swept_at": to_utc_z(self.swept_at),
            "processed": self.processed,
            "released": self.released,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
        }


class PaymentTimeoutSweeper:
    def __init__(
        self,
        orders: OrderRepository,
        state_machine: OrderStateMachine,
        *,
        reminder_window: timedelta = timedelta(hours=2),
        clock: Callable[[], datetime] = utcnow,
    ):
        self._orders = orders
        self._state_machine = state_machine
        self._reminder_window = reminder_window
        self._clock = clock
        self._flight = SingleFlight()

    @property
    def running(self) -> bool:
        return self._flight.busy

    def find_expired(self, now: datetime | None = None) -> list[Order]:
        """Orders still awaiting payment whose due date is strictly before now."""
        now = now or self._clock()
        return self._orders.find_by_status_due_before(AWAITING_PAYMENT_STATUSES, now)

    def find_approaching_deadline(
        self,
        now: datetime | None = None,
        window: timedelta | None = None,
    ) -> list[Order]:
        """Orders awaiting payment due within [now, now + window]. Read-only."""
        now = now or self._clock()
        window = self._reminder_window if window is None else window
        return self._orders.find_by_status_due_between(AWAITING_PAYMENT_STATUSES, now, now + window)

    def sweep(self, now: datetime | None = None) -> SweepResult:
        """
        Cancel every expired order and release its reservation.

        Per-order failures are recorded and the sweep moves on. Raises
        AlreadyProcessedError if another sweep is in progress.
        """
        with self._flight.claim() as claimed:
            if not claimed:
                raise AlreadyProcessedError("A payment sweep is already running")
            now = now or self._clock()
            return self._sweep(now)

    def _sweep(self, now: datetime) -> SweepResult:
        result = SweepResult(swept_at=now)
        expired = self.find_expired(now)
        logger.info("Payment sweep found %s expired order(s)", len(expired))

        for order in expired:
            order_id = order.id
            entry = SweepEntry(order_id=order_id, order_number=order.order_number)
            try:
                outcome = self._state_machine.cancel(
                    order_id,
                    reason=REASON_PAYMENT_TIMEOUT,
                    payment_status="EXPIRED",
                    only_if_status=PENDING,
                )
                entry.released = outcome.stock_released
            except AlreadyProcessedError as exc:
                # Paid or cancelled by someone else since the query ran
                logger.warning("Skipping order %s during sweep: %s", order_id, exc)
                entry.skipped = True
            except InventoryError as exc:
                logger.warning("Failed to expire order %s: %s", order_id, exc)
                entry.error = str(exc)
            result.results.append(entry)

        logger.info(
            "Payment sweep done processed=%s released=%s failed=%s skipped=%s",
            result.processed, result.released, result.failed, result.skipped,
        )
        return result

    def payment_statistics(self) -> dict:
        counts = self._orders.payment_status_counts()
        return {
            "by_status": counts,
            "total": sum(counts.values()),
        }
