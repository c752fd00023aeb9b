"""
Fixed-window request quotas per identifier (user id, client IP).

Redis INCR/EXPIRE is restart-safe and shared across instances; the in-process
backend is for single-instance deployments and as the fallback when Redis is
unreachable.
"""
import asyncio
import logging
import math
import time
from dataclasses import dataclass

import redis.asyncio as redis
from fastapi import Request

from mediagen.config import settings
from mediagen.core.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    count: int
    retry_after: int


class MemoryRateLimiter:
    def __init__(self, sweep_interval: float = 60.0, clock=time.monotonic):
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        return len(self._counters)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._counters.items() if reset_at <= now]
        for key in expired:
            del self._counters[key]
        self._next_sweep = now + self._sweep_interval

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateDecision:
        async with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            count, reset_at = self._counters.get(key, (0, now + window_seconds))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._counters[key] = (count, reset_at)
        return RateDecision(
            allowed=count <= limit,
            count=count,
            retry_after=max(1, math.ceil(reset_at - now)),
        )


class RedisRateLimiter:
    def __init__(self, client: redis.Redis, fallback: MemoryRateLimiter | None = None):
        self._client = client
        self._fallback = fallback or MemoryRateLimiter()

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateDecision:
        try:
            count = await self._client.incr(key)
            if count == 1:
                await self._client.expire(key, window_seconds)
            ttl = await self._client.ttl(key)
        except redis.RedisError as exc:
            logger.warning(f"Redis rate limiter unavailable, using in-process counters: {exc}")
            return await self._fallback.hit(key, limit, window_seconds)
        return RateDecision(
            allowed=count <= limit,
            count=count,
            retry_after=ttl if ttl and ttl > 0 else window_seconds,
        )

    async def close(self) -> None:
        await self._client.aclose()


_limiter: MemoryRateLimiter | RedisRateLimiter | None = None


def get_rate_limiter() -> MemoryRateLimiter | RedisRateLimiter:
    global _limiter
    if _limiter is None:
        if settings.rate_limit_backend == "redis":
            _limiter = RedisRateLimiter(redis.from_url(settings.redis_url, decode_responses=True))
        else:
            _limiter = MemoryRateLimiter()
    return _limiter


async def close_rate_limiter() -> None:
    global _limiter
    if isinstance(_limiter, RedisRateLimiter):
        await _limiter.close()
    _limiter = None


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def enforce(
    limiter: MemoryRateLimiter | RedisRateLimiter,
    scope: str,
    identifier: str,
    limit: int,
    window_seconds: int | None = None,
) -> None:
    window = window_seconds or settings.rate_limit_window_seconds
    decision = await limiter.hit(f"mediagen:rate:{scope}:{identifier}", limit, window)
    if not decision.allowed:
        logger.info(f"Rate limit hit for {scope}={identifier} ({decision.count}/{limit})")
        raise RateLimitExceededError(retry_after=decision.retry_after)
