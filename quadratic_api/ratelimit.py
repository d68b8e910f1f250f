"""
Fixed-window rate limiting keyed by auth-subject.

Supports an in-memory limiter for single-process runs and a Redis-backed
implementation that shares counters across workers.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Protocol

import redis

ANONYMOUS_KEY = "anonymous"


@dataclass(frozen=True)
class RateLimitResult:
    limit: int
    count: int
    reset_after_ms: int

    @property
    def allowed(self) -> bool:
        return self.count <= self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    def headers(self) -> dict[str, str]:
        reset_seconds = str(max(0, math.ceil(self.reset_after_ms / 1000)))
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": reset_seconds,
        }
        if not self.allowed:
            headers["Retry-After"] = reset_seconds
        return headers


class RateLimiter(Protocol):
    """Counts a request against ``key`` and reports the window state."""

    def hit(self, key: str) -> RateLimitResult:
        ...

    def reset(self, key: str) -> None:
        ...


@dataclass
class InMemoryRateLimiter:
    """Process-local counters; lost on restart."""

    max_requests: int
    window_ms: int
    clock: Callable[[], float] = time.monotonic
    windows: Dict[str, tuple[int, float]] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()
        self._next_sweep_ms: float | None = None

    def _sweep(self, now_ms: float) -> None:
        if self._next_sweep_ms is not None and now_ms < self._next_sweep_ms:
            return
        expired = [k for k, (_, reset_at) in self.windows.items() if now_ms >= reset_at]
        for k in expired:
            del self.windows[k]
        self._next_sweep_ms = now_ms + self.window_ms

    def hit(self, key: str) -> RateLimitResult:
        now_ms = self.clock() * 1000
        with self._lock:
            self._sweep(now_ms)
            count, reset_at = self.windows.get(key, (0, now_ms + self.window_ms))
            if now_ms >= reset_at:
                count, reset_at = 0, now_ms + self.window_ms
            count += 1
            self.windows[key] = (count, reset_at)
        return RateLimitResult(
            limit=self.max_requests,
            count=count,
            reset_after_ms=int(reset_at - now_ms),
        )

    def reset(self, key: str) -> None:
        with self._lock:
            self.windows.pop(key, None)


@dataclass
class RedisRateLimiter:
    """Redis-backed counters using INCR with a millisecond expiry per window."""

    url: str
    max_requests: int
    window_ms: int
    key_prefix: str = "quadratic:ratelimit"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def hit(self, key: str) -> RateLimitResult:
        redis_key = self._key(key)
        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        pipe.pttl(redis_key)
        count, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            # First hit of a new window (or a key that lost its expiry).
            self.client.pexpire(redis_key, self.window_ms)
            ttl = self.window_ms
        return RateLimitResult(
            limit=self.max_requests, count=int(count), reset_after_ms=int(ttl)
        )

    def reset(self, key: str) -> None:
        self.client.delete(self._key(key))
