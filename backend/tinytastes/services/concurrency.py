# Overview: Service-layer concurrency helpers; row locking, bounded retry, single-flight guard.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for stock and order mutations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version_id column on
    StockEntry turns a lost update into a StaleDataError there instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception propagates on the
    first attempt. After the last attempt the error propagates; outage
    handling belongs to the caller.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


class SingleFlight:
    """
    Non-blocking mutex: at most one holder, other callers are turned away
    instead of queueing.

    Used to keep overlapping payment sweeps from processing the same orders.
    """

    def __init__(self):
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def claim(self):
        """Yields True if the flight was claimed, False if another holder has it."""
        acquired = self._lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()
