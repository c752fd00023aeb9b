"""Tests for fixed-window rate limiting."""
import pytest
import redis.asyncio as redis
from starlette.requests import Request

from mediagen.core.exceptions import RateLimitExceededError
from mediagen.core.rate_limit import MemoryRateLimiter, RedisRateLimiter, client_ip, enforce


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """Just enough of redis.asyncio.Redis for INCR/EXPIRE/TTL."""

    def __init__(self, fail: bool = False):
        self.counts: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.fail = fail

    async def incr(self, key):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key, seconds):
        self.ttls[key] = seconds

    async def ttl(self, key):
        return self.ttls.get(key, -1)


def _request(headers: dict[str, str] | None = None, host: str = "10.0.0.9") -> Request:
    return Request(
        {
            "type": "http",
            "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
            "client": (host, 1234),
        }
    )


@pytest.mark.asyncio
async def test_memory_limiter_blocks_after_limit():
    limiter = MemoryRateLimiter(clock=FakeClock())

    decisions = [await limiter.hit("user:1", limit=3, window_seconds=60) for _ in range(4)]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert decisions[-1].retry_after == 60


@pytest.mark.asyncio
async def test_memory_limiter_resets_after_window():
    clock = FakeClock()
    limiter = MemoryRateLimiter(clock=clock)
    for _ in range(3):
        await limiter.hit("user:1", limit=3, window_seconds=60)

    clock.now += 61
    decision = await limiter.hit("user:1", limit=3, window_seconds=60)

    assert decision.allowed
    assert decision.count == 1


@pytest.mark.asyncio
async def test_memory_limiter_sweeps_expired_counters():
    clock = FakeClock()
    limiter = MemoryRateLimiter(sweep_interval=30, clock=clock)
    await limiter.hit("ip:a", limit=5, window_seconds=10)
    await limiter.hit("ip:b", limit=5, window_seconds=10)
    assert len(limiter) == 2

    clock.now += 31
    await limiter.hit("ip:c", limit=5, window_seconds=10)

    assert len(limiter) == 1


@pytest.mark.asyncio
async def test_identifiers_are_counted_separately():
    limiter = MemoryRateLimiter(clock=FakeClock())
    await limiter.hit("user:1", limit=1, window_seconds=60)

    assert (await limiter.hit("user:2", limit=1, window_seconds=60)).allowed


@pytest.mark.asyncio
async def test_redis_limiter_sets_expiry_on_first_hit():
    client = FakeRedis()
    limiter = RedisRateLimiter(client)

    first = await limiter.hit("k", limit=2, window_seconds=60)
    await limiter.hit("k", limit=2, window_seconds=60)
    third = await limiter.hit("k", limit=2, window_seconds=60)

    assert first.allowed and not third.allowed
    assert client.ttls == {"k": 60}
    assert third.retry_after == 60


@pytest.mark.asyncio
async def test_redis_outage_falls_back_to_memory():
    limiter = RedisRateLimiter(FakeRedis(fail=True), fallback=MemoryRateLimiter(clock=FakeClock()))

    decisions = [await limiter.hit("k", limit=1, window_seconds=60) for _ in range(2)]

    assert [d.allowed for d in decisions] == [True, False]


@pytest.mark.asyncio
async def test_enforce_raises_429_with_retry_after():
    limiter = MemoryRateLimiter(clock=FakeClock())
    await enforce(limiter, "user", "u1", limit=1, window_seconds=30)

    with pytest.raises(RateLimitExceededError) as exc_info:
        await enforce(limiter, "user", "u1", limit=1, window_seconds=30)

    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after == 30


def test_client_ip_prefers_forwarded_headers():
    assert client_ip(_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})) == "203.0.113.7"
    assert client_ip(_request({"X-Real-IP": "198.51.100.2"})) == "198.51.100.2"
    assert client_ip(_request()) == "10.0.0.9"
