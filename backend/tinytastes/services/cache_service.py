# Overview: Explicit cache interface with a pluggable backing store.

"""
Cache layer.

Consumers receive a Cache (or a CacheStore) through their constructor; there
is no module-level cache instance. InMemoryCacheStore expires entries when
they are read after their TTL, and sweeps out the rest itself every
purge_every writes, so keys that are never read again (one rate-limit
counter per client address) do not accumulate.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterable


class CacheStore(ABC):
    def now(self) -> float:
        """Clock that TTLs and incr() expiry times are measured on."""
        return time.monotonic()

    @abstractmethod
    def get(self, key: str) -> Any | None:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def keys(self) -> Iterable[str]:
        ...

    @abstractmethod
    def incr(self, key: str, amount: int, ttl_seconds: float) -> tuple[int, float]:
        """
        Add amount to an integer counter, creating it with ttl_seconds if absent
        or expired. Returns (new_value, expires_at) where expires_at is on the
        store's clock.
        """


@dataclass
class _Item:
    value: Any
    expires_at: float


class InMemoryCacheStore(CacheStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic, *, purge_every: int = 1000):
        if purge_every <= 0:
            raise ValueError("purge_every must be positive")
        self._clock = clock
        self._items: dict[str, _Item] = {}
        self._lock = threading.Lock()
        self._purge_every = purge_every
        self._writes = 0

    def now(self) -> float:
        return self._clock()

    def _live(self, key: str) -> _Item | None:
        item = self._items.get(key)
        if item is None:
            return None
        if self._clock() >= item.expires_at:
            del self._items[key]
            return None
        return item

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._live(key)
            return item.value if item else None

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._items[key] = _Item(value=value, expires_at=self._clock() + ttl_seconds)
            self._count_write()

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return [key for key in list(self._items) if self._live(key) is not None]

    def incr(self, key: str, amount: int, ttl_seconds: float) -> tuple[int, float]:
        with self._lock:
            item = self._live(key)
            if item is None:
                item = _Item(value=0, expires_at=self._clock() + ttl_seconds)
                self._items[key] = item
                self._count_write()
            item.value += amount
            return item.value, item.expires_at

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked()

    def _count_write(self) -> None:
        self._writes += 1
        if self._writes >= self._purge_every:
            self._writes = 0
            self._purge_locked()

    def _purge_locked(self) -> int:
        now = self._clock()
        stale = [key for key, item in self._items.items() if now >= item.expires_at]
        for key in stale:
            del self._items[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self.keys())


class Cache:
    """Namespaced facade over a CacheStore."""

    def __init__(self, store: CacheStore, *, namespace: str = "tinytastes", default_ttl: float = 300):
        self.store = store
        self.namespace = namespace
        self.default_ttl = default_ttl

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Any | None:
        return self.store.get(self._key(key))

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        self.store.set(self._key(key), value, self.default_ttl if ttl is None else ttl)

    def delete(self, key: str) -> bool:
        return self.store.delete(self._key(key))

    def get_or_set(self, key: str, loader: Callable[[], Any], ttl: float | None = None) -> Any:
        value = self.get(key)
        if value is None:
            value = loader()
            self.set(key, value, ttl)
        return value

    def invalidate(self, prefix: str) -> int:
        """Drop every key starting with prefix. Returns how many were removed."""
        full = self._key(prefix)
        removed = 0
        for key in list(self.store.keys()):
            if key.startswith(full) and self.store.delete(key):
                removed += 1
        return removed
