"""
Payment timeout sweeper tests (in-memory repositories, fake clock).
"""

import threading
from datetime import timedelta

import pytest

from tinytastes.errors import AlreadyProcessedError
from tinytastes.services.order_lifecycle_service import CANCELLED, CONFIRMED, PENDING


def test_expired_order_is_cancelled_and_released_once(core):
    core.ledger.provision(1, 1, initial_stock=10)
    order = core.place([(1, 1, 3)], due_in=timedelta(hours=1))
    core.clock.advance(hours=2)

    first = core.sweeper.sweep()

    assert (first.processed, first.released, first.failed) == (1, 1, 0)
    assert first.results[0].order_id == order.id
    cancelled = core.orders.get(order.id)
    assert cancelled.status == CANCELLED
    assert cancelled.payment_status == "EXPIRED"
    assert cancelled.cancellation_reason == "payment_timeout"
    assert core.ledger.get_entry(1, 1).reserved_stock == 0

    second = core.sweeper.sweep()

    assert (second.processed, second.released, second.failed) == (0, 0, 0)
    assert second.results == []
    assert core.ledger.get_entry(1, 1).reserved_stock == 0


def test_only_past_due_pending_orders_are_expired(core):
    core.ledger.provision(1, 1, initial_stock=20)
    overdue = core.place([(1, 1, 1)], due_in=timedelta(hours=1))
    not_yet = core.place([(1, 1, 1)], due_in=timedelta(hours=5))
    paid = core.place([(1, 1, 1)], due_in=timedelta(hours=1))
    core.state_machine.confirm_payment(paid.id)
    core.clock.advance(hours=2)

    expired = core.sweeper.find_expired()
    result = core.sweeper.sweep()

    assert [o.id for o in expired] == [overdue.id]
    assert result.processed == 1
    assert core.orders.get(not_yet.id).status == PENDING
    assert core.orders.get(paid.id).status == CONFIRMED


def test_due_exactly_now_is_not_expired(core):
    core.ledger.provision(1, 1, initial_stock=5)
    order = core.place([(1, 1, 1)], due_in=timedelta(hours=1))
    core.clock.advance(hours=1)

    assert core.sweeper.find_expired() == []
    assert core.orders.get(order.id).status == PENDING


def test_find_approaching_deadline_is_read_only(core):
    core.ledger.provision(1, 1, initial_stock=10)
    soon = core.place([(1, 1, 1)], due_in=timedelta(minutes=90))
    later = core.place([(1, 1, 1)], due_in=timedelta(hours=5))

    approaching = core.sweeper.find_approaching_deadline()
    wider = core.sweeper.find_approaching_deadline(window=timedelta(hours=6))

    assert [o.id for o in approaching] == [soon.id]
    assert [o.id for o in wider] == [soon.id, later.id]
    assert core.ledger.get_entry(1, 1).reserved_stock == 2


def test_failed_order_does_not_stop_the_sweep(core, monkeypatch):
    core.ledger.provision(1, 1, initial_stock=10)
    core.ledger.provision(2, 1, initial_stock=10)
    broken = core.place([(1, 1, 1)], due_in=timedelta(hours=1))
    healthy = core.place([(2, 1, 1)], due_in=timedelta(hours=1))
    core.clock.advance(hours=2)

    # Stock row for the first order disappears before the sweep
    del core.stock._entries[(1, 1)]

    result = core.sweeper.sweep()

    assert (result.processed, result.failed) == (1, 1)
    assert core.orders.get(broken.id).status == PENDING
    assert core.orders.get(healthy.id).status == CANCELLED


def test_order_paid_during_sweep_is_skipped(core, monkeypatch):
    core.ledger.provision(1, 1, initial_stock=10)
    order = core.place([(1, 1, 2)], due_in=timedelta(hours=1))
    core.clock.advance(hours=2)

    original = core.sweeper.find_expired

    def find_then_pay(now=None):
        found = original(now)
        core.state_machine.confirm_payment(order.id)
        return found

    monkeypatch.setattr(core.sweeper, "find_expired", find_then_pay)
    result = core.sweeper.sweep()

    assert (result.processed, result.skipped, result.released) == (0, 1, 0)
    assert core.orders.get(order.id).status == CONFIRMED
    assert core.ledger.get_entry(1, 1).current_stock == 8


def test_overlapping_sweep_is_rejected(core, monkeypatch):
    entered = threading.Event()
    release = threading.Event()
    original = core.sweeper.find_expired

    def slow_find(now=None):
        entered.set()
        release.wait(5)
        return original(now)

    monkeypatch.setattr(core.sweeper, "find_expired", slow_find)
    worker = threading.Thread(target=core.sweeper.sweep)
    worker.start()
    try:
        assert entered.wait(5)
        assert core.sweeper.running
        with pytest.raises(AlreadyProcessedError):
            core.sweeper.sweep()
    finally:
        release.set()
        worker.join()

    assert not core.sweeper.running


def test_payment_statistics(core):
    core.ledger.provision(1, 1, initial_stock=10)
    paid = core.place([(1, 1, 1)])
    core.place([(1, 1, 1)])
    core.state_machine.confirm_payment(paid.id)

    stats = core.sweeper.payment_statistics()

    assert stats["by_status"]["PAID"] == 1
    assert stats["by_status"]["PENDING"] == 1
    assert stats["total"] == 2


def test_repeated_failed_sweeps_leave_other_orders_stock_alone(core):
    core.ledger.provision(1, 1, initial_stock=10)
    core.ledger.provision(2, 1, initial_stock=10)
    stuck = core.place([(1, 1, 2), (2, 1, 3)], due_in=timedelta(hours=1))
    waiting = core.place([(1, 1, 4)], due_in=timedelta(hours=5))
    core.clock.advance(hours=2)

    # Second line's stock row disappears, so every sweep fails on it
    del core.stock._entries[(2, 1)]

    for _ in range(3):
        result = core.sweeper.sweep()
        assert result.failed == 1
        assert core.ledger.get_entry(1, 1).reserved_stock == 6

    assert core.orders.get(stuck.id).status == PENDING
    assert core.orders.get(stuck.id).stock_state == "RESERVED"
    assert core.orders.get(waiting.id).status == PENDING
