"""
Stock ledger tests (in-memory repository).

Covers restock limits and period rollover, bulk restock partial failure,
reserve/release/commit arithmetic and the reserved <= current invariant.
"""

import threading
from datetime import timedelta

import pytest

from tinytastes.errors import (
    InsufficientStockError,
    RestockLimitExceededError,
    StockEntryNotFoundError,
)


P, S = 1, 1


def _assert_invariant(entry):
    assert 0 <= entry.reserved_stock <= entry.current_stock


class TestRestock:
    def test_restock_increases_current_stock(self, core):
        core.ledger.provision(P, S, initial_stock=10, weekly_limit=50)

        snapshot = core.ledger.restock(P, S, 15)

        assert snapshot["current_stock"] == 25
        assert snapshot["restocked_in_period"] == 15
        assert core.ledger.get_entry(P, S).last_restocked == core.clock()

    def test_restock_over_weekly_limit_fails_without_mutating(self, core):
        core.ledger.provision(P, S, initial_stock=10, weekly_limit=20)
        core.ledger.restock(P, S, 15)

        with pytest.raises(RestockLimitExceededError) as exc:
            core.ledger.restock(P, S, 6)

        assert exc.value.details["remaining_allowance"] == 5
        entry = core.ledger.get_entry(P, S)
        assert entry.current_stock == 25
        assert entry.restocked_in_period == 15

    def test_restock_exactly_to_limit_is_allowed(self, core):
        core.ledger.provision(P, S, weekly_limit=20)
        core.ledger.restock(P, S, 20)
        assert core.ledger.get_entry(P, S).current_stock == 20

    def test_zero_weekly_limit_means_no_cap(self, core):
        core.ledger.provision(P, S, weekly_limit=0)
        core.ledger.restock(P, S, 5000)
        assert core.ledger.get_entry(P, S).current_stock == 5000

    def test_allowance_resets_after_period(self, core):
        core.ledger.provision(P, S, weekly_limit=20)
        core.ledger.restock(P, S, 20)

        core.clock.advance(days=7, seconds=1)
        snapshot = core.ledger.restock(P, S, 20)

        assert snapshot["current_stock"] == 40
        assert snapshot["restocked_in_period"] == 20

    def test_allowance_does_not_reset_within_period(self, core):
        core.ledger.provision(P, S, weekly_limit=20)
        core.ledger.restock(P, S, 20)

        core.clock.advance(days=6)
        with pytest.raises(RestockLimitExceededError):
            core.ledger.restock(P, S, 1)

    def test_restock_can_replace_weekly_limit(self, core):
        core.ledger.provision(P, S, weekly_limit=10)
        snapshot = core.ledger.restock(P, S, 30, weekly_limit=40)
        assert snapshot["weekly_limit"] == 40
        assert snapshot["current_stock"] == 30

    @pytest.mark.parametrize("amount", [0, -3, 2.5, True])
    def test_restock_rejects_non_positive_or_non_integer_amount(self, core, amount):
        core.ledger.provision(P, S)
        with pytest.raises(ValueError):
            core.ledger.restock(P, S, amount)

    def test_restock_unknown_entry(self, core):
        with pytest.raises(StockEntryNotFoundError):
            core.ledger.restock(9, 9, 1)


class TestBulkRestock:
    def test_one_invalid_and_one_valid_item(self, core):
        core.ledger.provision(1, 1, initial_stock=0, weekly_limit=10)
        core.ledger.provision(2, 1, initial_stock=0, weekly_limit=10)

        result = core.ledger.bulk_restock([
            {"product_id": 1, "portion_size_id": 1, "amount": 11},
            {"product_id": 2, "portion_size_id": 1, "amount": 5},
        ])

        assert (result.succeeded, result.failed) == (1, 1)
        assert result.to_dict()["succeeded"] == 1
        assert result.results[0].success is False
        assert result.results[0].details["weekly_limit"] == 10
        assert core.ledger.get_entry(1, 1).current_stock == 0
        assert core.ledger.get_entry(2, 1).current_stock == 5

    def test_unknown_entry_is_reported_per_item(self, core):
        core.ledger.provision(1, 1)

        result = core.ledger.bulk_restock([
            {"product_id": 1, "portion_size_id": 1, "amount": 3},
            {"product_id": 42, "portion_size_id": 1, "amount": 3},
        ])

        assert (result.succeeded, result.failed) == (1, 1)
        assert result.results[1].error == "Stock entry not found"

    def test_bad_weekly_limit_fails_only_its_item(self, core):
        core.ledger.provision(1, 1, weekly_limit=10)
        core.ledger.provision(2, 1, weekly_limit=10)

        result = core.ledger.bulk_restock([
            {"product_id": 1, "portion_size_id": 1, "amount": 3, "weekly_limit": "x"},
            {"product_id": 2, "portion_size_id": 1, "amount": 3},
        ])

        assert (result.succeeded, result.failed) == (1, 1)
        assert "weekly_limit" in result.results[0].error
        entry = core.ledger.get_entry(1, 1)
        assert (entry.current_stock, entry.weekly_limit) == (0, 10)
        assert core.ledger.get_entry(2, 1).current_stock == 3

    @pytest.mark.parametrize("weekly_limit", ["10", 2.5, -1, True])
    def test_restock_rejects_bad_weekly_limit(self, core, weekly_limit):
        core.ledger.provision(P, S)
        with pytest.raises(ValueError):
            core.ledger.restock(P, S, 1, weekly_limit=weekly_limit)
        assert core.ledger.get_entry(P, S).current_stock == 0


class TestCheckAvailability:
    def test_reports_counts_and_whether_quantity_fits(self, core):
        core.ledger.provision(P, S, initial_stock=10)
        core.ledger.reserve(P, S, 4)

        assert core.ledger.check_availability(P, S, 6) == {
            "available": True,
            "available_stock": 6,
            "reserved_stock": 4,
            "total_stock": 10,
        }
        assert core.ledger.check_availability(P, S, 7)["available"] is False

    def test_does_not_reserve(self, core):
        core.ledger.provision(P, S, initial_stock=3)
        core.ledger.check_availability(P, S, 3)
        assert core.ledger.get_entry(P, S).reserved_stock == 0

    def test_unknown_entry_is_unavailable_with_zero_counts(self, core):
        assert core.ledger.check_availability(42, 1, 1) == {
            "available": False,
            "available_stock": 0,
            "reserved_stock": 0,
            "total_stock": 0,
        }

    @pytest.mark.parametrize("quantity", [0, -2, "3"])
    def test_rejects_bad_quantity(self, core, quantity):
        core.ledger.provision(P, S, initial_stock=3)
        with pytest.raises(ValueError):
            core.ledger.check_availability(P, S, quantity)


class TestReserveReleaseCommit:
    def test_reserve_beyond_available_fails_and_leaves_state(self, core):
        core.ledger.provision(P, S, initial_stock=10)
        core.ledger.reserve(P, S, 8)

        with pytest.raises(InsufficientStockError) as exc:
            core.ledger.reserve(P, S, 5)

        assert exc.value.details["available"] == 2
        entry = core.ledger.get_entry(P, S)
        assert entry.reserved_stock == 8
        assert entry.current_stock == 10

    def test_reserve_exact_available(self, core):
        core.ledger.provision(P, S, initial_stock=3)
        reservation = core.ledger.reserve(P, S, 3)
        assert reservation.quantity == 3
        assert core.ledger.get_entry(P, S).available_stock == 0

    def test_release_floors_at_zero(self, core):
        core.ledger.provision(P, S, initial_stock=10)
        core.ledger.reserve(P, S, 2)

        released = core.ledger.release(P, S, 5)

        assert released == 2
        assert core.ledger.get_entry(P, S).reserved_stock == 0

    def test_commit_consumes_stock_and_keeps_available(self, core):
        core.ledger.provision(P, S, initial_stock=10)
        core.ledger.reserve(P, S, 4)
        available_before = core.ledger.get_entry(P, S).available_stock

        core.ledger.commit(P, S, 4)

        entry = core.ledger.get_entry(P, S)
        assert entry.current_stock == 6
        assert entry.reserved_stock == 0
        assert entry.available_stock == available_before

    def test_commit_more_than_reserved_fails(self, core):
        core.ledger.provision(P, S, initial_stock=10)
        core.ledger.reserve(P, S, 1)
        with pytest.raises(InsufficientStockError):
            core.ledger.commit(P, S, 2)
        assert core.ledger.get_entry(P, S).reserved_stock == 1

    def test_invariant_holds_across_a_mixed_sequence(self, core):
        core.ledger.provision(P, S, initial_stock=5, weekly_limit=0)
        entry = core.ledger.get_entry(P, S)
        operations = [
            lambda: core.ledger.reserve(P, S, 3),
            lambda: core.ledger.restock(P, S, 2),
            lambda: core.ledger.reserve(P, S, 4),
            lambda: core.ledger.commit(P, S, 3),
            lambda: core.ledger.release(P, S, 10),
            lambda: core.ledger.reserve(P, S, 100),
        ]
        for op in operations:
            try:
                op()
            except InsufficientStockError:
                pass
            _assert_invariant(entry)

    def test_concurrent_reservations_never_oversell(self, core):
        core.ledger.provision(P, S, initial_stock=10)
        outcomes = []
        lock = threading.Lock()

        def worker():
            try:
                core.ledger.reserve(P, S, 1)
                ok = True
            except InsufficientStockError:
                ok = False
            with lock:
                outcomes.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(25)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(True) == 10
        assert core.ledger.get_entry(P, S).reserved_stock == 10


class TestStatistics:
    def test_statistics_totals(self, core):
        core.ledger.provision(1, 1, initial_stock=20)
        core.ledger.provision(2, 1, initial_stock=3)
        core.ledger.provision(3, 1, initial_stock=0)
        core.ledger.reserve(1, 1, 4)

        stats = core.ledger.statistics()

        assert stats["total_items"] == 3
        assert stats["total_current_stock"] == 23
        assert stats["total_reserved_stock"] == 4
        assert stats["total_available_stock"] == 19
        assert stats["low_stock_items"] == 2
        assert stats["out_of_stock_items"] == 1

    def test_statistics_cache_is_invalidated_by_writes(self, core):
        core.ledger.provision(1, 1, initial_stock=20)
        assert core.ledger.statistics()["total_current_stock"] == 20

        core.ledger.restock(1, 1, 5)

        assert core.ledger.statistics()["total_current_stock"] == 25

    def test_totals_read_before_a_concurrent_write_are_not_cached(self, core, monkeypatch):
        core.ledger.provision(1, 1, initial_stock=5)
        aggregate = core.stock.aggregate

        def aggregate_then_restock(threshold):
            totals = aggregate(threshold)
            core.ledger.restock(1, 1, 3)
            return totals

        monkeypatch.setattr(core.stock, "aggregate", aggregate_then_restock)
        assert core.ledger.statistics()["total_current_stock"] == 5

        monkeypatch.setattr(core.stock, "aggregate", aggregate)
        assert core.ledger.statistics()["total_current_stock"] == 8

    def test_low_stock_and_weekly_restock_lists(self, core):
        core.ledger.provision(1, 1, initial_stock=2, weekly_limit=50)
        core.ledger.provision(2, 1, initial_stock=40, weekly_limit=50)

        low = core.ledger.low_stock_alerts()
        weekly = core.ledger.weekly_restock_items()

        assert [item["product_id"] for item in low] == [1]
        assert [item["product_id"] for item in weekly] == [1]
        assert weekly[0]["suggested_restock"] == 48

    def test_provision_twice_is_rejected(self, core):
        core.ledger.provision(1, 1)
        with pytest.raises(ValueError):
            core.ledger.provision(1, 1)

    def test_period_rollover_uses_clock(self, core):
        core.ledger.provision(1, 1, weekly_limit=5)
        started = core.ledger.get_entry(1, 1).period_started_at
        core.clock.advance(days=8)
        core.ledger.restock(1, 1, 5)
        assert core.ledger.get_entry(1, 1).period_started_at == started + timedelta(days=8)
