"""
Fixed-window rate limiting.

WHY: The admin API triggers bulk stock writes and payment sweeps; a runaway
client should be throttled rather than hammer the database.

Counters live in an injected CacheStore, so the limiter works with any
backing store and has no process-global state.
"""

from __future__ import annotations

from dataclasses import dataclass

from .cache_service import CacheStore


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int

    def headers(self) -> dict:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class FixedWindowRateLimiter:
    def __init__(self, store: CacheStore, *, limit: int, window_seconds: int, namespace: str = "ratelimit"):
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self._namespace = namespace

    def hit(self, key: str) -> RateLimitResult:
        """Count one request for key and report whether it is within the window's limit."""
        count, expires_at = self._store.incr(f"{self._namespace}:{key}", 1, self.window_seconds)
        retry_after = max(0, int(round(expires_at - self._store.now())))
        return RateLimitResult(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            retry_after_seconds=retry_after,
        )

    def reset(self, key: str) -> None:
        self._store.delete(f"{self._namespace}:{key}")
