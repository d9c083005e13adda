# Overview: Storage interfaces for stock and orders, plus their SQLAlchemy implementations.

"""
Repository seams for the storefront core.

The stock ledger, reservation manager, order state machine and payment
sweeper only talk to StockRepository / OrderRepository, so they run
unchanged against the relational store (SqlAlchemy* below) or the
in-memory store used by tests (memory_repositories.py).

Atomicity contract:
- StockRepository.mutate() serializes all writes to one (product, portion)
  row and persists nothing if the callback raises.
- OrderRepository.compare_and_set_status() is a conditional update; exactly
  one of several racing callers sees True.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Iterable, TypeVar

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..errors import StockEntryNotFoundError
from ..extensions import db
from ..models import StockEntry, Order, OrderSequence, PAYMENT_STATUSES
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


T = TypeVar("T")


class StockRepository(ABC):
    @abstractmethod
    def get(self, product_id: int, portion_size_id: int) -> StockEntry | None:
        ...

    @abstractmethod
    def create(
        self,
        product_id: int,
        portion_size_id: int,
        *,
        initial_stock: int = 0,
        weekly_limit: int = 0,
        now: datetime | None = None,
    ) -> StockEntry:
        ...

    @abstractmethod
    def mutate(self, product_id: int, portion_size_id: int, fn: Callable[[StockEntry], T]) -> T:
        """
        Run fn(entry) as the row's single owner and persist the result.

        Raises StockEntryNotFoundError if the row does not exist. If fn
        raises, no change is persisted and the exception propagates.
        """

    @abstractmethod
    def list_entries(self) -> list[StockEntry]:
        ...

    @abstractmethod
    def aggregate(self, low_stock_threshold: int) -> dict:
        """Totals for the inventory dashboard."""

    def low_stock(self, threshold: int) -> list[StockEntry]:
        return [e for e in self.list_entries() if e.current_stock <= threshold]

    def weekly_restock_candidates(self, ratio: float) -> list[StockEntry]:
        return [
            e for e in self.list_entries()
            if e.weekly_limit > 0 and e.current_stock < e.weekly_limit * ratio
        ]


class OrderRepository(ABC):
    @abstractmethod
    def add(self, order: Order) -> Order:
        ...

    @abstractmethod
    def get(self, order_id: int) -> Order | None:
        ...

    @abstractmethod
    def compare_and_set_status(
        self,
        order_id: int,
        expected_statuses: Iterable[str],
        new_status: str,
        **changes,
    ) -> bool:
        """Atomically move order_id to new_status iff its status is in expected_statuses."""

    @abstractmethod
    def find_by_status_due_before(self, statuses: Iterable[str], cutoff: datetime) -> list[Order]:
        ...

    @abstractmethod
    def find_by_status_due_between(
        self, statuses: Iterable[str], start: datetime, end: datetime
    ) -> list[Order]:
        ...

    @abstractmethod
    def payment_status_counts(self) -> dict[str, int]:
        ...

    @abstractmethod
    def next_order_number(self, prefix: str, pad: int = 4) -> str:
        ...


# =============================================================================
# SQLAlchemy
# =============================================================================

class SqlAlchemyStockRepository(StockRepository):
    def _query(self, product_id: int, portion_size_id: int):
        return db.session.query(StockEntry).filter_by(
            product_id=product_id,
            portion_size_id=portion_size_id,
        )

    def get(self, product_id: int, portion_size_id: int) -> StockEntry | None:
        return self._query(product_id, portion_size_id).first()

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
        entry = StockEntry(
            product_id=product_id,
            portion_size_id=portion_size_id,
            current_stock=initial_stock,
            reserved_stock=0,
            weekly_limit=weekly_limit,
            restocked_in_period=0,
            period_started_at=now,
            last_restocked=now,
        )
        db.session.add(entry)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ValueError(
                f"stock entry for product {product_id} / portion size {portion_size_id} already exists"
            )
        return entry

    def mutate(self, product_id: int, portion_size_id: int, fn: Callable[[StockEntry], T]) -> T:
        def _op():
            entry = lock_for_update(self._query(product_id, portion_size_id)).first()
            if entry is None:
                db.session.rollback()
                raise StockEntryNotFoundError(
                    "Stock entry not found",
                    details={"product_id": product_id, "portion_size_id": portion_size_id},
                )
            try:
                result = fn(entry)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return result

        return run_with_retry(_op)

    def list_entries(self) -> list[StockEntry]:
        return (
            db.session.query(StockEntry)
            .order_by(StockEntry.product_id, StockEntry.portion_size_id)
            .all()
        )

    def aggregate(self, low_stock_threshold: int) -> dict:
        totals = db.session.query(
            func.count(StockEntry.id),
            func.coalesce(func.sum(StockEntry.current_stock), 0),
            func.coalesce(func.sum(StockEntry.reserved_stock), 0),
            func.coalesce(func.sum(StockEntry.weekly_limit), 0),
        ).one()
        low = db.session.query(func.count(StockEntry.id)).filter(
            StockEntry.current_stock <= low_stock_threshold
        ).scalar()
        out = db.session.query(func.count(StockEntry.id)).filter(
            StockEntry.current_stock <= 0
        ).scalar()
        return {
            "total_items": int(totals[0] or 0),
            "total_current_stock": int(totals[1] or 0),
            "total_reserved_stock": int(totals[2] or 0),
            "total_weekly_limit": int(totals[3] or 0),
            "low_stock_items": int(low or 0),
            "out_of_stock_items": int(out or 0),
        }

    def low_stock(self, threshold: int) -> list[StockEntry]:
        return (
            db.session.query(StockEntry)
            .filter(StockEntry.current_stock <= threshold)
            .order_by(StockEntry.current_stock, StockEntry.product_id)
            .all()
        )

    def weekly_restock_candidates(self, ratio: float) -> list[StockEntry]:
        return (
            db.session.query(StockEntry)
            .filter(
                StockEntry.weekly_limit > 0,
                StockEntry.current_stock < StockEntry.weekly_limit * ratio,
            )
            .order_by(StockEntry.product_id, StockEntry.portion_size_id)
            .all()
        )


class SqlAlchemyOrderRepository(OrderRepository):
    def add(self, order: Order) -> Order:
        db.session.add(order)
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return order

    def get(self, order_id: int) -> Order | None:
        return db.session.get(Order, order_id)

    def compare_and_set_status(
        self,
        order_id: int,
        expected_statuses: Iterable[str],
        new_status: str,
        **changes,
    ) -> bool:
        expected = list(expected_statuses)

        def _op():
            updated = (
                db.session.query(Order)
                .filter(Order.id == order_id, Order.status.in_(expected))
                .update({"status": new_status, **changes}, synchronize_session=False)
            )
            db.session.commit()
            return updated == 1

        return run_with_retry(_op)

    def find_by_status_due_before(self, statuses: Iterable[str], cutoff: datetime) -> list[Order]:
        return (
            db.session.query(Order)
            .filter(Order.status.in_(list(statuses)), Order.payment_due_date < cutoff)
            .order_by(Order.payment_due_date, Order.id)
            .all()
        )

    def find_by_status_due_between(
        self, statuses: Iterable[str], start: datetime, end: datetime
    ) -> list[Order]:
        return (
            db.session.query(Order)
            .filter(
                Order.status.in_(list(statuses)),
                Order.payment_due_date >= start,
                Order.payment_due_date <= end,
            )
            .order_by(Order.payment_due_date, Order.id)
            .all()
        )

    def payment_status_counts(self) -> dict[str, int]:
        rows = (
            db.session.query(Order.payment_status, func.count(Order.id))
            .group_by(Order.payment_status)
            .all()
        )
        counts = {status: 0 for status in PAYMENT_STATUSES}
        for status, count in rows:
            counts[status] = int(count)
        return counts

    def next_order_number(self, prefix: str, pad: int = 4) -> str:
        """
        Atomically allocate the next order number for a prefix.

        Uses a conditional UPDATE on the (prefix) counter row to prevent
        duplicate numbers under concurrent checkout.
        """
        stmt = (
            update(OrderSequence)
            .where(OrderSequence.prefix == prefix)
            .values(next_number=OrderSequence.next_number + 1)
        )

        def _current() -> int:
            return (
                db.session.query(OrderSequence.next_number)
                .filter_by(prefix=prefix)
                .scalar()
            ) - 1

        def _op() -> str:
            result = db.session.execute(stmt)
            if result.rowcount:
                number = _current()
            else:
                db.session.add(OrderSequence(prefix=prefix, next_number=2))
                try:
                    db.session.flush()
                    number = 1
                except IntegrityError:
                    db.session.rollback()
                    result = db.session.execute(stmt)
                    if not result.rowcount:
                        raise
                    number = _current()
            db.session.commit()
            return f"{prefix}{number:0{pad}d}"

        return run_with_retry(_op)
