import unittest

from tinytastes.services.cache_service import Cache, InMemoryCacheStore
from tinytastes.services.rate_limit_service import FixedWindowRateLimiter


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class CacheTests(unittest.TestCase):
    def setUp(self):
        self.clock = ManualClock()
        self.store = InMemoryCacheStore(clock=self.clock)
        self.cache = Cache(self.store, namespace="test", default_ttl=60)

    def test_value_expires_after_ttl(self):
        self.cache.set("stats", {"total": 1}, ttl=10)
        self.assertEqual(self.cache.get("stats"), {"total": 1})

        self.clock.advance(10)

        self.assertIsNone(self.cache.get("stats"))

    def test_get_or_set_loads_once_until_expiry(self):
        calls = []

        def loader():
            calls.append(1)
            return len(calls)

        self.assertEqual(self.cache.get_or_set("k", loader, ttl=5), 1)
        self.assertEqual(self.cache.get_or_set("k", loader, ttl=5), 1)
        self.clock.advance(6)
        self.assertEqual(self.cache.get_or_set("k", loader, ttl=5), 2)

    def test_invalidate_prefix_only_touches_namespace(self):
        other = Cache(self.store, namespace="other")
        self.cache.set("inventory:statistics", 1)
        self.cache.set("inventory:low", 2)
        self.cache.set("orders:count", 3)
        other.set("inventory:statistics", 4)

        removed = self.cache.invalidate("inventory:")

        self.assertEqual(removed, 2)
        self.assertEqual(self.cache.get("orders:count"), 3)
        self.assertEqual(other.get("inventory:statistics"), 4)

    def test_purge_expired(self):
        self.cache.set("a", 1, ttl=1)
        self.cache.set("b", 2, ttl=100)
        self.clock.advance(2)

        self.assertEqual(self.store.purge_expired(), 1)
        self.assertEqual(len(self.store), 1)

    def test_writes_sweep_out_expired_keys_nobody_reads(self):
        store = InMemoryCacheStore(clock=self.clock, purge_every=3)
        store.set("a", 1, 1)
        store.set("b", 2, 1)
        self.clock.advance(2)

        store.set("c", 3, 100)

        self.assertEqual(sorted(store._items), ["c"])

    def test_purge_every_must_be_positive(self):
        with self.assertRaises(ValueError):
            InMemoryCacheStore(purge_every=0)

    def test_separate_stores_do_not_share_state(self):
        Cache(InMemoryCacheStore()).set("k", 1)
        self.assertIsNone(Cache(InMemoryCacheStore()).get("k"))


class RateLimiterTests(unittest.TestCase):
    def setUp(self):
        self.clock = ManualClock()
        self.store = InMemoryCacheStore(clock=self.clock)
        self.limiter = FixedWindowRateLimiter(self.store, limit=3, window_seconds=60)

    def test_allows_up_to_limit_then_rejects(self):
        results = [self.limiter.hit("10.0.0.1") for _ in range(4)]

        self.assertEqual([r.allowed for r in results], [True, True, True, False])
        self.assertEqual(results[2].remaining, 0)
        self.assertEqual(results[3].retry_after_seconds, 60)
        self.assertEqual(results[3].headers()["Retry-After"], "60")

    def test_window_resets(self):
        for _ in range(3):
            self.limiter.hit("10.0.0.1")
        self.clock.advance(61)

        self.assertTrue(self.limiter.hit("10.0.0.1").allowed)

    def test_keys_are_independent(self):
        for _ in range(3):
            self.limiter.hit("10.0.0.1")

        self.assertFalse(self.limiter.hit("10.0.0.1").allowed)
        self.assertTrue(self.limiter.hit("10.0.0.2").allowed)

    def test_reset(self):
        for _ in range(4):
            self.limiter.hit("10.0.0.1")
        self.limiter.reset("10.0.0.1")
        self.assertTrue(self.limiter.hit("10.0.0.1").allowed)

    def test_one_off_clients_do_not_pile_up(self):
        store = InMemoryCacheStore(clock=self.clock, purge_every=10)
        limiter = FixedWindowRateLimiter(store, limit=3, window_seconds=60)

        for i in range(50):
            limiter.hit(f"10.0.{i}.1")
            self.clock.advance(30)

        self.assertLessEqual(len(store._items), 10)

    def test_invalid_configuration(self):
        with self.assertRaises(ValueError):
            FixedWindowRateLimiter(self.store, limit=0, window_seconds=60)


if __name__ == "__main__":
    unittest.main()
