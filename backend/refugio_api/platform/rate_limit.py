from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Protocol

from limits import RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage, RedisStorage, Storage
from limits.aio.strategies import FixedWindowRateLimiter
from limits.errors import StorageError
from redis.asyncio import Redis

from refugio_api.platform.redis import get_redis

logger = logging.getLogger(__name__)

NAMESPACE = "contact"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.floor(self.reset_at)),
        }


class RateLimiter(Protocol):
    limit: int

    async def check(self, client_key: str) -> RateLimitDecision: ...


class FixedWindowLimiter:
    def __init__(
        self,
        storage: Storage,
        *,
        limit: int = 20,
        window_seconds: float = 60.0,
        fallback: FixedWindowLimiter | None = None,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")

        self.limit = limit
        self.storage = storage
        self._item = RateLimitItemPerSecond(limit, int(window_seconds), namespace=NAMESPACE)
        self._strategy = FixedWindowRateLimiter(storage)
        self._fallback = fallback

    async def check(self, client_key: str) -> RateLimitDecision:
        try:
            allowed = await self._strategy.hit(self._item, client_key)
            stats = await self._strategy.get_window_stats(self._item, client_key)
        except StorageError as exc:
            if self._fallback is None:
                raise
            logger.warning("Rate limit storage unavailable, using in-memory counter: %s", exc.storage_error)
            return await self._fallback.check(client_key)

        return RateLimitDecision(
            allowed=allowed,
            limit=self.limit,
            remaining=stats.remaining,
            reset_at=stats.reset_time,
        )


class InMemoryRateLimiter(FixedWindowLimiter):
    def __init__(self, *, limit: int = 20, window_seconds: float = 60.0) -> None:
        super().__init__(MemoryStorage(), limit=limit, window_seconds=window_seconds)


class RedisRateLimiter(FixedWindowLimiter):
    def __init__(
        self,
        *,
        redis_url: str,
        redis: Redis | None = None,
        limit: int = 20,
        window_seconds: float = 60.0,
        storage: Storage | None = None,
        fallback: FixedWindowLimiter | None = None,
    ) -> None:
        if storage is None:
            options = {"connection_pool": redis.connection_pool} if redis is not None else {}
            storage = RedisStorage(
                f"async+{redis_url}",
                implementation="redispy",
                wrap_exceptions=True,
                **options,
            )
        super().__init__(
            storage,
            limit=limit,
            window_seconds=window_seconds,
            fallback=fallback or InMemoryRateLimiter(limit=limit, window_seconds=window_seconds),
        )


def build_rate_limiter(settings, redis: Redis | None = None) -> RateLimiter:
    backend = (settings.rate_limit_backend or "memory").strip().lower()
    if backend == "redis":
        return RedisRateLimiter(
            redis_url=settings.redis_url,
            redis=redis or get_redis(settings.redis_url),
            limit=settings.rate_limit_max,
            window_seconds=settings.rate_limit_window_seconds,
        )
    if backend != "memory":
        raise ValueError(f"Unknown RATE_LIMIT_BACKEND: {settings.rate_limit_backend}")

    return InMemoryRateLimiter(
        limit=settings.rate_limit_max,
        window_seconds=settings.rate_limit_window_seconds,
    )
