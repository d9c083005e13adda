"""
Reservation Manager: reserve, release and commit an order's items as a unit.

WHY: StockLedger primitives lock one row at a time, and no multi-row
transaction is assumed. All-or-nothing for an order comes from compensation
instead: if item N fails, items 1..N-1 are undone before the error is raised.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .stock_service import StockLedger, StockReservation


logger = logging.getLogger(__name__)


def merge_items(items: Iterable) -> list[StockReservation]:
    """
    Collapse order lines to one reservation per (product, portion size).

    Accepts anything with product_id / portion_size_id / quantity attributes
    (OrderItem, StockReservation) or mappings with those keys. First-seen order
    is kept so error reports name the first offending line.
    """
    merged: dict[tuple[int, int], int] = {}
    for item in items:
        if isinstance(item, dict):
            product_id = item["product_id"]
            portion_size_id = item["portion_size_id"]
            quantity = item["quantity"]
        else:
            product_id = item.product_id
            portion_size_id = item.portion_size_id
            quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValueError("quantity must be a positive integer")
        key = (product_id, portion_size_id)
        merged[key] = merged.get(key, 0) + quantity
    return [StockReservation(pid, psid, qty) for (pid, psid), qty in merged.items()]


class ReservationManager:
    def __init__(self, ledger: StockLedger):
        self._ledger = ledger

    def reserve_for_order(self, items: Iterable) -> list[StockReservation]:
        """
        Reserve every item or none.

        On the first failure, everything reserved by this call is released and
        the failure (InsufficientStockError / StockEntryNotFoundError) is
        re-raised, naming the failing item in its details.
        """
        wanted = merge_items(items)
        held: list[StockReservation] = []
        try:
            for reservation in wanted:
                held.append(self._ledger.reserve(
                    reservation.product_id,
                    reservation.portion_size_id,
                    reservation.quantity,
                ))
        except Exception:
            logger.warning("Order reservation failed; rolling back %s held item(s)", len(held))
            self._undo(held, self._ledger.release)
            raise
        return held

    def release_for_order(self, items: Iterable) -> int:
        """
        Release every item. Returns the total quantity released.

        The ledger floors reserved stock at zero, so a repeated call cannot
        drive counts negative. If an item fails, the quantities already
        released by this call are held again before the error propagates, so
        the order still owns exactly what it owned before.
        """
        done: list[StockReservation] = []
        try:
            for reservation in merge_items(items):
                released = self._ledger.release(
                    reservation.product_id,
                    reservation.portion_size_id,
                    reservation.quantity,
                )
                if released:
                    done.append(StockReservation(reservation.product_id, reservation.portion_size_id, released))
        except Exception:
            logger.warning("Order release failed; re-holding %s released item(s)", len(done))
            self._undo(done, self._ledger.reserve)
            raise
        return sum(reservation.quantity for reservation in done)

    def commit_for_order(self, items: Iterable) -> list[StockReservation]:
        """Commit every item; if one fails, the ones already committed are reinstated."""
        wanted = merge_items(items)
        done: list[StockReservation] = []
        try:
            for reservation in wanted:
                self._ledger.commit(
                    reservation.product_id,
                    reservation.portion_size_id,
                    reservation.quantity,
                )
                done.append(reservation)
        except Exception:
            logger.warning("Order commit failed; reinstating %s committed item(s)", len(done))
            self._undo(done, self._ledger.reinstate)
            raise
        return done

    @staticmethod
    def _undo(reservations: list[StockReservation], action) -> None:
        for reservation in reversed(reservations):
            action(reservation.product_id, reservation.portion_size_id, reservation.quantity)
