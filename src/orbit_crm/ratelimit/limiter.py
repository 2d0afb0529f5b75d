"""Fixed-window rate limiters.

The first request for an identifier opens a window of ``window`` seconds;
later requests in the window increment a counter, and once the counter
reaches ``limit`` further requests fail until ``reset_at`` passes.

``InMemoryRateLimiter`` is process-local: counters reset on restart and are
not shared between workers, so it is best-effort abuse mitigation only.
``RedisRateLimiter`` keeps the same contract in a shared Redis instance.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from orbit_crm.common.exceptions import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    success: bool
    remaining: int
    reset_at: float  # unix seconds

    def retry_after(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_at - now))

    def raise_for_limit(self) -> None:
        if not self.success:
            raise RateLimitedError(self.reset_at)


@dataclass
class _WindowEntry:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """Process-local fixed-window limiter keyed by identifier."""

    def __init__(
        self,
        limit: int,
        window: float,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._store: dict[str, _WindowEntry] = {}
        self._next_sweep = clock() + window * 2

    async def check(self, identifier: str) -> RateLimitResult:
        now = self._clock()
        if now >= self._next_sweep:
            self.sweep(now)

        entry = self._store.get(identifier)
        if entry is None or now > entry.reset_at:
            reset_at = now + self.window
            self._store[identifier] = _WindowEntry(count=1, reset_at=reset_at)
            return RateLimitResult(True, self.limit - 1, reset_at)

        if entry.count >= self.limit:
            return RateLimitResult(False, 0, entry.reset_at)

        entry.count += 1
        return RateLimitResult(True, self.limit - entry.count, entry.reset_at)

    def sweep(self, now: float | None = None) -> int:
        """Drop expired windows. Returns the number of entries removed."""
        now = self._clock() if now is None else now
        expired = [key for key, entry in self._store.items() if now > entry.reset_at]
        for key in expired:
            del self._store[key]
        self._next_sweep = now + self.window * 2
        return len(expired)

    def __len__(self) -> int:
        return len(self._store)


class RedisRateLimiter:
    """Fixed-window limiter backed by Redis INCR + PEXPIRE.

    The key's TTL is the window, so expired windows are reclaimed by Redis
    itself and no sweep is needed.
    """

    def __init__(self, redis, limit: int, window: float, prefix: str = "orbit:rl"):
        self.redis = redis
        self.limit = limit
        self.window = window
        self.prefix = prefix

    async def check(self, identifier: str) -> RateLimitResult:
        key = f"{self.prefix}:{identifier}"
        window_ms = int(self.window * 1000)

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.pexpire(key, window_ms, nx=True)
            pipe.pttl(key)
            count, _, ttl_ms = await pipe.execute()

        if ttl_ms is None or ttl_ms < 0:
            ttl_ms = window_ms
        reset_at = time.time() + ttl_ms / 1000

        if count > self.limit:
            return RateLimitResult(False, 0, reset_at)
        return RateLimitResult(True, self.limit - count, reset_at)


def create_rate_limiter(limit: int, window: float, name: str, redis_url: str = ""):
    """Build a limiter, using Redis when a URL is configured."""
    if redis_url:
        import redis.asyncio as redis_asyncio

        client = redis_asyncio.from_url(redis_url, decode_responses=True)
        logger.info("Rate limiter %s using Redis", name)
        return RedisRateLimiter(client, limit, window, prefix=f"orbit:rl:{name}")
    return InMemoryRateLimiter(limit, window)
