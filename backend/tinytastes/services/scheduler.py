"""
Background payment sweep.

Runs PaymentTimeoutSweeper.sweep() every interval on a daemon thread, each
run inside its own app context so the SQLAlchemy session is scoped and
removed per run. Deployments that prefer cron can leave this off and call
`flask payments sweep` instead.
"""

from __future__ import annotations

import logging
import threading

from flask import Flask

from ..errors import AlreadyProcessedError
from .payment_timeout_service import PaymentTimeoutSweeper


logger = logging.getLogger(__name__)


class PaymentSweepScheduler:
    def __init__(self, app: Flask, sweeper: PaymentTimeoutSweeper, *, interval_seconds: float = 300):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._app = app
        self._sweeper = sweeper
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="payment-sweep", daemon=True)
        self._thread.start()
        logger.info("Payment sweep scheduler started (every %ss)", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Payment sweep scheduler stopped")

    def run_once(self):
        with self._app.app_context():
            return self._sweeper.sweep()

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.run_once()
            except AlreadyProcessedError:
                logger.info("Previous payment sweep still running; skipping this tick")
            except Exception:
                # Keep the loop alive; the next tick retries
                logger.exception("Scheduled payment sweep failed")
