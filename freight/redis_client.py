import redis.asyncio as aioredis
from freight.config import get_settings

settings = get_settings()

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=100,
        )
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ---------------------------------------------------------------------------
# Lock helpers
# ---------------------------------------------------------------------------

def redis_lock(redis: aioredis.Redis, key: str, ttl_seconds: float, wait_seconds: float, sleep: float = 0.05):
    """Token-owned lock with expiry; release is an atomic compare-and-delete script."""
    return redis.lock(key, timeout=ttl_seconds, sleep=sleep, blocking_timeout=wait_seconds)


# ---------------------------------------------------------------------------
# Cache helpers
# ---------------------------------------------------------------------------

async def cache_set(redis: aioredis.Redis, key: str, value: str, ttl: int) -> None:
    await redis.setex(key, ttl, value)


async def cache_get(redis: aioredis.Redis, key: str) -> str | None:
    return await redis.get(key)

