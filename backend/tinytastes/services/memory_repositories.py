# Overview: In-process StockRepository / OrderRepository backed by dicts and mutexes.

"""
In-memory repositories.

Used by the core test suite and anywhere the lifecycle needs to run without a
database. Records are plain (transient, never session-attached) model
instances, so callers see the same attributes as with the SQL store.

Single-owner discipline is a per-key threading.Lock for stock rows and one
repository lock for order status changes.
"""

from __future__ import annotations

import threading
from collections import Counter
from datetime import datetime
from typing import Callable, Iterable, TypeVar

from ..errors import StockEntryNotFoundError
from ..models import StockEntry, Order, PAYMENT_STATUSES
from ..time_utils import utcnow
from .repositories import StockRepository, OrderRepository


T = TypeVar("T")

_STOCK_FIELDS = (
    "current_stock",
    "reserved_stock",
    "weekly_limit",
    "restocked_in_period",
    "period_started_at",
    "last_restocked",
)


class InMemoryStockRepository(StockRepository):
    def __init__(self):
        self._entries: dict[tuple[int, int], StockEntry] = {}
        self._locks: dict[tuple[int, int], threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._next_id = 1

    def _row_lock(self, key: tuple[int, int]) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(key, threading.Lock())

    def get(self, product_id: int, portion_size_id: int) -> StockEntry | None:
        return self._entries.get((product_id, portion_size_id))

    def create(
        self,
        product_id: int,
        portion_size_id: int,
        *,
        initial_stock: int = 0,
        weekly_limit: int = 0,
        now: datetime | None = None,
    ) -> StockEntry:
        now = now or utcnow()
        key = (product_id, portion_size_id)
        with self._registry_lock:
            if key in self._entries:
                raise ValueError(
                    f"stock entry for product {product_id} / portion size {portion_size_id} already exists"
                )
            entry = StockEntry(
                id=self._next_id,
                product_id=product_id,
                portion_size_id=portion_size_id,
                current_stock=initial_stock,
                reserved_stock=0,
                weekly_limit=weekly_limit,
                restocked_in_period=0,
                period_started_at=now,
                last_restocked=now,
                version_id=1,
            )
            self._next_id += 1
            self._entries[key] = entry
            return entry

    def mutate(self, product_id: int, portion_size_id: int, fn: Callable[[StockEntry], T]) -> T:
        key = (product_id, portion_size_id)
        with self._row_lock(key):
            entry = self._entries.get(key)
            if entry is None:
                raise StockEntryNotFoundError(
                    "Stock entry not found",
                    details={"product_id": product_id, "portion_size_id": portion_size_id},
                )
            before = {name: getattr(entry, name) for name in _STOCK_FIELDS}
            try:
                result = fn(entry)
            except Exception:
                for name, value in before.items():
                    setattr(entry, name, value)
                raise
            entry.version_id += 1
            return result

    def list_entries(self) -> list[StockEntry]:
        return [self._entries[key] for key in sorted(self._entries)]

    def aggregate(self, low_stock_threshold: int) -> dict:
        entries = self.list_entries()
        return {
            "total_items": len(entries),
            "total_current_stock": sum(e.current_stock for e in entries),
            "total_reserved_stock": sum(e.reserved_stock for e in entries),
            "total_weekly_limit": sum(e.weekly_limit for e in entries),
            "low_stock_items": sum(1 for e in entries if e.current_stock <= low_stock_threshold),
            "out_of_stock_items": sum(1 for e in entries if e.current_stock <= 0),
        }


class InMemoryOrderRepository(OrderRepository):
    def __init__(self):
        self._orders: dict[int, Order] = {}
        self._sequences: dict[str, int] = {}
        self._lock = threading.Lock()
        self._next_id = 1
        self._next_item_id = 1

    def add(self, order: Order) -> Order:
        with self._lock:
            order.id = self._next_id
            self._next_id += 1
            for item in order.items:
                item.id = self._next_item_id
                item.order_id = order.id
                self._next_item_id += 1
            self._orders[order.id] = order
        return order

    def get(self, order_id: int) -> Order | None:
        return self._orders.get(order_id)

    def compare_and_set_status(
        self,
        order_id: int,
        expected_statuses: Iterable[str],
        new_status: str,
        **changes,
    ) -> bool:
        expected = set(expected_statuses)
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status not in expected:
                return False
            order.status = new_status
            for name, value in changes.items():
                setattr(order, name, value)
            return True

    def find_by_status_due_before(self, statuses: Iterable[str], cutoff: datetime) -> list[Order]:
        wanted = set(statuses)
        with self._lock:
            found = [
                o for o in self._orders.values()
                if o.status in wanted and o.payment_due_date < cutoff
            ]
        return sorted(found, key=lambda o: (o.payment_due_date, o.id))

    def find_by_status_due_between(
        self, statuses: Iterable[str], start: datetime, end: datetime
    ) -> list[Order]:
        wanted = set(statuses)
        with self._lock:
            found = [
                o for o in self._orders.values()
                if o.status in wanted and start <= o.payment_due_date <= end
            ]
        return sorted(found, key=lambda o: (o.payment_due_date, o.id))

    def payment_status_counts(self) -> dict[str, int]:
        with self._lock:
            tally = Counter(o.payment_status for o in self._orders.values())
        counts = {status: 0 for status in PAYMENT_STATUSES}
        counts.update(tally)
        return counts

    def next_order_number(self, prefix: str, pad: int = 4) -> str:
        with self._lock:
            number = self._sequences.get(prefix, 0) + 1
            self._sequences[prefix] = number
        return f"{prefix}{number:0{pad}d}"
