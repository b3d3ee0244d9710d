from redis.asyncio import Redis, from_url

from refugio_api.platform.config import settings

_redis: Redis | None = None


def get_redis(url: str | None = None) -> Redis:
    global _redis
    if _redis is None:
        _redis = from_url(url or settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
