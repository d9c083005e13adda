# Overview: Stock ledger; authoritative available/reserved/total counts per (product, portion size).

"""
Tiny Tastes Stock Ledger

================================================================================
Invariants (authoritative)
================================================================================
- current_stock >= 0 and reserved_stock >= 0 at all times.
- reserved_stock <= current_stock, so available = current - reserved >= 0.
- reserve() never mutates on failure.
- release() floors reserved_stock at zero and logs when it had to.
- commit() consumes stock: current and reserved both drop by the quantity,
  so available is unchanged by a commit.
- restock() is capped per period by weekly_limit (0 = no cap). The period
  starts at the first restock after the previous one elapsed.

Every primitive touches exactly one StockEntry through
StockRepository.mutate(), which gives it single-owner access to the row.
Multi-item atomicity is ReservationManager's job.
================================================================================
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Callable, Iterable, Mapping

from ..errors import (
    InsufficientStockError,
    RestockLimitExceededError,
    StockEntryNotFoundError,
)
from ..models import StockEntry
from ..time_utils import utcnow, period_has_elapsed
from .cache_service import Cache
from .repositories import StockRepository


logger = logging.getLogger(__name__)


def _require_positive_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if value <= 0:
        raise ValueError(f"{name} must be > 0")
    return value


@dataclass(frozen=True)
class StockReservation:
    """Handle for quantity held against one stock entry."""
    product_id: int
    portion_size_id: int
    quantity: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RestockItemResult:
    product_id: int | None
    portion_size_id: int | None
    amount: int | None
    success: bool
    error: str | None = None
    details: dict = field(default_factory=dict)
    entry: dict | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BulkRestockResult:
    results: list[RestockItemResult]

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


class StockLedger:
    STATISTICS_CACHE_KEY = "inventory:statistics"

    def __init__(
        self,
        repository: StockRepository,
        *,
        cache: Cache | None = None,
        low_stock_threshold: int = 5,
        restock_period: timedelta = timedelta(days=7),
        weekly_restock_ratio: float = 0.3,
        statistics_ttl: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repository = repository
        self._cache = cache
        self.low_stock_threshold = low_stock_threshold
        self.restock_period = restock_period
        self.weekly_restock_ratio = weekly_restock_ratio
        self._statistics_ttl = statistics_ttl
        self._clock = clock
        self._statistics_version = 0
        self._statistics_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_entry(self, product_id: int, portion_size_id: int) -> StockEntry | None:
        return self._repository.get(product_id, portion_size_id)

    def get_entry(self, product_id: int, portion_size_id: int) -> StockEntry:
        entry = self._repository.get(product_id, portion_size_id)
        if entry is None:
            raise StockEntryNotFoundError(
                "Stock entry not found",
                details={"product_id": product_id, "portion_size_id": portion_size_id},
            )
        return entry

    def check_availability(self, product_id: int, portion_size_id: int, quantity: int) -> dict:
        """
        Read-only check used before checkout. Nothing is reserved.

        An unknown entry is reported as unavailable with zero counts.
        """
        _require_positive_int("quantity", quantity)
        entry = self._repository.get(product_id, portion_size_id)
        if entry is None:
            logger.warning("Availability check for unknown stock entry product=%s portion=%s", product_id, portion_size_id)
            return {"available": False, "available_stock": 0, "reserved_stock": 0, "total_stock": 0}

        available_stock = entry.current_stock - entry.reserved_stock
        result = {
            "available": available_stock >= quantity,
            "available_stock": available_stock,
            "reserved_stock": entry.reserved_stock,
            "total_stock": entry.current_stock,
        }
        logger.debug(
            "Stock availability checked product=%s portion=%s requested=%s available=%s",
            product_id, portion_size_id, quantity, available_stock,
        )
        return result

    def statistics(self, *, use_cache: bool = True) -> dict:
        """
        Dashboard totals.

        low_stock_items counts entries with current_stock <= threshold;
        out_of_stock_items counts entries with current_stock <= 0.
        """
        def _load() -> dict:
            totals = self._repository.aggregate(self.low_stock_threshold)
            totals["total_available_stock"] = (
                totals["total_current_stock"] - totals["total_reserved_stock"]
            )
            totals["low_stock_threshold"] = self.low_stock_threshold
            return totals

        if self._cache is None or not use_cache:
            return _load()

        cached = self._cache.get(self.STATISTICS_CACHE_KEY)
        if cached is not None:
            return dict(cached)
        version = self._statistics_version
        totals = _load()
        # A write that landed during the load bumps the version; its totals are not cached
        with self._statistics_lock:
            if version == self._statistics_version:
                self._cache.set(self.STATISTICS_CACHE_KEY, totals, ttl=self._statistics_ttl)
        return dict(totals)

    def low_stock_alerts(self, threshold: int | None = None) -> list[dict]:
        threshold = self.low_stock_threshold if threshold is None else threshold
        alerts = [entry.to_dict() for entry in self._repository.low_stock(threshold)]
        logger.debug("Low stock alerts retrieved threshold=%s count=%s", threshold, len(alerts))
        return alerts

    def weekly_restock_items(self) -> list[dict]:
        """Entries with a weekly limit whose current stock fell below ratio x limit."""
        items = []
        for entry in self._repository.weekly_restock_candidates(self.weekly_restock_ratio):
            data = entry.to_dict()
            data["restock_threshold"] = entry.weekly_limit * self.weekly_restock_ratio
            data["suggested_restock"] = max(0, entry.weekly_limit - entry.current_stock)
            items.append(data)
        return items

    # ------------------------------------------------------------------
    # Provisioning & restock
    # ------------------------------------------------------------------

    def provision(
        self,
        product_id: int,
        portion_size_id: int,
        *,
        initial_stock: int = 0,
        weekly_limit: int = 0,
    ) -> StockEntry:
        if initial_stock < 0:
            raise ValueError("initial_stock must be >= 0")
        if weekly_limit < 0:
            raise ValueError("weekly_limit must be >= 0")
        entry = self._repository.create(
            product_id,
            portion_size_id,
            initial_stock=initial_stock,
            weekly_limit=weekly_limit,
            now=self._clock(),
        )
        self.invalidate_statistics()
        logger.info(
            "Stock entry provisioned product=%s portion=%s initial=%s weekly_limit=%s",
            product_id, portion_size_id, initial_stock, weekly_limit,
        )
        return entry

    def restock(
        self,
        product_id: int,
        portion_size_id: int,
        amount: int,
        *,
        weekly_limit: int | None = None,
    ) -> dict:
        """
        Add amount to current_stock, within the period's weekly allowance.

        weekly_limit, when given, replaces the entry's limit in the same
        mutation and is the limit the check uses.

        Raises RestockLimitExceededError without mutating when
        restocked_in_period + amount would exceed the limit.
        """
        _require_positive_int("amount", amount)
        if weekly_limit is not None and (
            isinstance(weekly_limit, bool) or not isinstance(weekly_limit, int) or weekly_limit < 0
        ):
            raise ValueError("weekly_limit must be an integer >= 0")

        def _apply(entry: StockEntry) -> dict:
            now = self._clock()
            limit = entry.weekly_limit if weekly_limit is None else weekly_limit
            rolled = period_has_elapsed(entry.period_started_at, self.restock_period, now)
            already = 0 if rolled else entry.restocked_in_period

            if limit > 0 and already + amount > limit:
                raise RestockLimitExceededError(
                    "Restock exceeds weekly limit",
                    details={
                        "product_id": product_id,
                        "portion_size_id": portion_size_id,
                        "requested": amount,
                        "weekly_limit": limit,
                        "restocked_in_period": already,
                        "remaining_allowance": max(0, limit - already),
                    },
                )

            if rolled:
                entry.period_started_at = now
                entry.restocked_in_period = 0
            entry.weekly_limit = limit
            entry.current_stock += amount
            entry.restocked_in_period += amount
            entry.last_restocked = now
            return entry.to_dict()

        snapshot = self._repository.mutate(product_id, portion_size_id, _apply)
        self.invalidate_statistics()
        logger.info(
            "Inventory restocked product=%s portion=%s amount=%s current=%s",
            product_id, portion_size_id, amount, snapshot["current_stock"],
        )
        return snapshot

    def bulk_restock(self, items: Iterable[Mapping]) -> BulkRestockResult:
        """
        Restock each item independently.

        A failing item (unknown entry, limit exceeded, bad amount) is recorded
        and the batch continues. Storage errors are not business failures and
        propagate.
        """
        items = list(items)
        logger.info("Starting bulk restock item_count=%s", len(items))

        results: list[RestockItemResult] = []
        for item in items:
            product_id = item.get("product_id")
            portion_size_id = item.get("portion_size_id")
            amount = item.get("amount")
            try:
                snapshot = self.restock(
                    product_id,
                    portion_size_id,
                    amount,
                    weekly_limit=item.get("weekly_limit"),
                )
            except ValueError as exc:
                logger.warning(
                    "Restock failed product=%s portion=%s amount=%s: %s",
                    product_id, portion_size_id, amount, exc,
                )
                results.append(RestockItemResult(
                    product_id=product_id,
                    portion_size_id=portion_size_id,
                    amount=amount,
                    success=False,
                    error=str(exc),
                    details=getattr(exc, "details", {}),
                ))
                continue
            results.append(RestockItemResult(
                product_id=product_id,
                portion_size_id=portion_size_id,
                amount=amount,
                success=True,
                entry=snapshot,
            ))

        result = BulkRestockResult(results=results)
        logger.info("Bulk restock completed succeeded=%s failed=%s", result.succeeded, result.failed)
        return result

    def set_weekly_limit(self, product_id: int, portion_size_id: int, weekly_limit: int) -> dict:
        if isinstance(weekly_limit, bool) or not isinstance(weekly_limit, int) or weekly_limit < 0:
            raise ValueError("weekly_limit must be an integer >= 0")

        def _apply(entry: StockEntry) -> dict:
            entry.weekly_limit = weekly_limit
            return entry.to_dict()

        snapshot = self._repository.mutate(product_id, portion_size_id, _apply)
        self.invalidate_statistics()
        return snapshot

    # ------------------------------------------------------------------
    # Reservation primitives
    # ------------------------------------------------------------------

    def reserve(self, product_id: int, portion_size_id: int, quantity: int) -> StockReservation:
        """Hold quantity against available stock, or raise InsufficientStockError untouched."""
        _require_positive_int("quantity", quantity)

        def _apply(entry: StockEntry) -> StockReservation:
            available = entry.current_stock - entry.reserved_stock
            if available < quantity:
                raise InsufficientStockError(
                    "Insufficient stock",
                    details={
                        "product_id": product_id,
                        "portion_size_id": portion_size_id,
                        "requested": quantity,
                        "available": available,
                    },
                )
            entry.reserved_stock += quantity
            return StockReservation(product_id, portion_size_id, quantity)

        reservation = self._repository.mutate(product_id, portion_size_id, _apply)
        self.invalidate_statistics()
        logger.debug("Stock reserved product=%s portion=%s quantity=%s", product_id, portion_size_id, quantity)
        return reservation

    def release(self, product_id: int, portion_size_id: int, quantity: int) -> int:
        """
        Give back reserved quantity. Returns how much was actually released.

        reserved_stock never goes below zero; if quantity exceeds what is
        reserved the shortfall is logged as an anomaly (usually a double release).
        """
        _require_positive_int("quantity", quantity)

        def _apply(entry: StockEntry) -> int:
            released = min(quantity, entry.reserved_stock)
            if released < quantity:
                logger.warning(
                    "Release exceeds reserved stock product=%s portion=%s requested=%s reserved=%s; "
                    "flooring at zero",
                    product_id, portion_size_id, quantity, entry.reserved_stock,
                )
            entry.reserved_stock -= released
            return released

        released = self._repository.mutate(product_id, portion_size_id, _apply)
        self.invalidate_statistics()
        logger.debug("Stock released product=%s portion=%s quantity=%s", product_id, portion_size_id, released)
        return released

    def commit(self, product_id: int, portion_size_id: int, quantity: int) -> None:
        """Consume reserved stock on payment: current and reserved both drop by quantity."""
        _require_positive_int("quantity", quantity)

        def _apply(entry: StockEntry) -> None:
            if entry.reserved_stock < quantity:
                raise InsufficientStockError(
                    "Cannot commit more than is reserved",
                    details={
                        "product_id": product_id,
                        "portion_size_id": portion_size_id,
                        "requested": quantity,
                        "reserved": entry.reserved_stock,
                    },
                )
            entry.reserved_stock -= quantity
            entry.current_stock -= quantity

        self._repository.mutate(product_id, portion_size_id, _apply)
        self.invalidate_statistics()
        logger.debug("Stock committed product=%s portion=%s quantity=%s", product_id, portion_size_id, quantity)

    def reinstate(self, product_id: int, portion_size_id: int, quantity: int) -> None:
        """Undo a commit (compensation when a multi-item commit fails part way)."""
        _require_positive_int("quantity", quantity)

        def _apply(entry: StockEntry) -> None:
            entry.current_stock += quantity
            entry.reserved_stock += quantity

        self._repository.mutate(product_id, portion_size_id, _apply)
        self.invalidate_statistics()
        logger.info("Committed stock reinstated product=%s portion=%s quantity=%s", product_id, portion_size_id, quantity)

    def invalidate_statistics(self) -> None:
        with self._statistics_lock:
            self._statistics_version += 1
            if self._cache is not None:
                self._cache.delete(self.STATISTICS_CACHE_KEY)
