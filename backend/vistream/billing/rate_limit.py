"""Fixed-window request rate limiting with memory and Redis backends."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod

from redis.asyncio import Redis

from vistream.config import settings

logger = logging.getLogger(__name__)


class RateLimiter(ABC):
    """Counts requests per key inside a fixed time window."""

    def __init__(self, max_requests: int, window_seconds: int, namespace: str = "ratelimit") -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._namespace = namespace

    @abstractmethod
    async def check(self, key: str) -> bool:
        """Count one request for ``key``; False once the window's quota is used up."""

    async def close(self) -> None:
        return None

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"


class MemoryRateLimiter(RateLimiter):
    """In-process counters.

    WARNING: counts are per worker. Use RedisRateLimiter when running several
    instances.
    """

    def __init__(self, max_requests: int, window_seconds: int, namespace: str = "ratelimit") -> None:
        super().__init__(max_requests, window_seconds, namespace)
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = asyncio.Lock()

    async def check(self, key: str) -> bool:
        full_key = self._make_key(key)
        now = time.monotonic()
        async with self._lock:
            started, count = self._windows.get(full_key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            count += 1
            self._windows[full_key] = (started, count)
            # Opportunistic cleanup of expired windows
            if len(self._windows) > 10000:
                self._windows = {
                    k: v for k, v in self._windows.items() if now - v[0] < self.window_seconds
                }
        return count <= self.max_requests

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._windows.pop(self._make_key(key), None)


class RedisRateLimiter(RateLimiter):
    """Shared counters in Redis (INCR + EXPIRE)."""

    def __init__(
        self,
        redis: Redis,
        max_requests: int,
        window_seconds: int,
        namespace: str = "ratelimit",
    ) -> None:
        super().__init__(max_requests, window_seconds, namespace)
        self._redis = redis

    @classmethod
    def from_url(cls, url: str, max_requests: int, window_seconds: int) -> "RedisRateLimiter":
        return cls(Redis.from_url(url, decode_responses=True), max_requests, window_seconds)

    async def check(self, key: str) -> bool:
        full_key = self._make_key(key)
        count = await self._redis.incr(full_key)
        if count == 1:
            await self._redis.expire(full_key, self.window_seconds)
        return count <= self.max_requests

    async def close(self) -> None:
        await self._redis.aclose()


_limiter: RateLimiter | None = None


def build_rate_limiter() -> RateLimiter:
    """Limiter for the configured backend."""
    if settings.rate_limit_backend == "redis":
        logger.info("Using Redis rate limiter at %s", settings.redis_url)
        return RedisRateLimiter.from_url(
            settings.redis_url, settings.rate_limit_max_requests, settings.rate_limit_window_seconds
        )
    return MemoryRateLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_seconds)


def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency returning the process-wide limiter."""
    global _limiter
    if _limiter is None:
        _limiter = build_rate_limiter()
    return _limiter


async def close_rate_limiter() -> None:
    global _limiter
    if _limiter is not None:
        await _limiter.close()
        _limiter = None
