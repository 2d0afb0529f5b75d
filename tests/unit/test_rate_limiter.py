"""Tests for the fixed-window rate limiters."""

import pytest

from orbit_crm.common.exceptions import RateLimitedError
from orbit_crm.ratelimit.limiter import (
    InMemoryRateLimiter,
    RateLimitResult,
    RedisRateLimiter,
    create_rate_limiter,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestInMemoryRateLimiter:
    async def test_allows_up_to_limit(self, clock):
        limiter = InMemoryRateLimiter(20, 60, clock=clock)
        for i in range(20):
            result = await limiter.check("user-1")
            assert result.success
            assert result.remaining == 19 - i
        blocked = await limiter.check("user-1")
        assert not blocked.success
        assert blocked.remaining == 0
        assert blocked.reset_at == 1_060.0

    async def test_identifiers_are_independent(self, clock):
        limiter = InMemoryRateLimiter(1, 60, clock=clock)
        assert (await limiter.check("a")).success
        assert not (await limiter.check("a")).success
        assert (await limiter.check("b")).success

    async def test_window_resets_after_expiry(self, clock):
        limiter = InMemoryRateLimiter(2, 60, clock=clock)
        await limiter.check("u")
        await limiter.check("u")
        assert not (await limiter.check("u")).success

        clock.now += 61
        result = await limiter.check("u")
        assert result.success
        assert result.remaining == 1
        assert result.reset_at == clock.now + 60

    async def test_still_blocked_at_reset_boundary(self, clock):
        limiter = InMemoryRateLimiter(1, 60, clock=clock)
        await limiter.check("u")
        clock.now += 60
        assert not (await limiter.check("u")).success

    async def test_sweep_removes_expired(self, clock):
        limiter = InMemoryRateLimiter(5, 60, clock=clock)
        await limiter.check("a")
        await limiter.check("b")
        clock.now += 30
        await limiter.check("c")
        clock.now += 45
        assert limiter.sweep() == 2
        assert len(limiter) == 1

    async def test_periodic_sweep_on_check(self, clock):
        limiter = InMemoryRateLimiter(5, 60, clock=clock)
        await limiter.check("a")
        clock.now += 121
        await limiter.check("b")
        assert len(limiter) == 1


class TestRateLimitResult:
    def test_retry_after(self):
        result = RateLimitResult(False, 0, reset_at=130.2)
        assert result.retry_after(now=100.0) == 31
        assert result.retry_after(now=200.0) == 0

    def test_raise_for_limit(self):
        RateLimitResult(True, 3, 10.0).raise_for_limit()
        with pytest.raises(RateLimitedError) as exc_info:
            RateLimitResult(False, 0, 10.0).raise_for_limit()
        assert exc_info.value.status_code == 429
        assert exc_info.value.reset_at == 10.0


class FakePipeline:
    def __init__(self, store: dict):
        self.store = store
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def incr(self, key):
        self.ops.append(("incr", key))

    def pexpire(self, key, ms, nx=False):
        self.ops.append(("pexpire", key, ms))

    def pttl(self, key):
        self.ops.append(("pttl", key))

    async def execute(self):
        key = self.ops[0][1]
        self.store[key] = self.store.get(key, 0) + 1
        return [self.store[key], True, 60_000]


class FakeRedis:
    def __init__(self):
        self.store = {}

    def pipeline(self, transaction=True):
        return FakePipeline(self.store)


class TestRedisRateLimiter:
    async def test_counts_in_shared_store(self):
        redis = FakeRedis()
        limiter = RedisRateLimiter(redis, limit=2, window=60, prefix="orbit:rl:chat")
        assert (await limiter.check("u")).remaining == 1
        assert (await limiter.check("u")).remaining == 0
        blocked = await limiter.check("u")
        assert not blocked.success
        assert redis.store == {"orbit:rl:chat:u": 3}

    def test_factory_defaults_to_memory(self):
        limiter = create_rate_limiter(5, 600, "invite")
        assert isinstance(limiter, InMemoryRateLimiter)
        assert limiter.limit == 5
