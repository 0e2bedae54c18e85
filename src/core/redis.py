"""Redis connection pool and fixed-window rate limiting.

Redis holds everything that must be shared between workers: registry lookup
caches, outbound rate-limit windows and circuit breaker state.
"""

import time

import redis.asyncio as redis

from src.core.config import settings
from src.core.logging import get_logger

logger = get_logger(__name__)


async def create_redis_pool() -> redis.Redis:
    """Create the application's Redis pool.

    Responses are decoded to ``str`` so callers can store JSON text directly.
    """
    return redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        max_connections=20,
    )


async def check_redis_health(pool: redis.Redis) -> bool:
    """Return True if Redis answers a ping."""
    try:
        await pool.ping()
        return True
    except Exception as e:
        logger.exception("redis_health_check_failed", error=str(e))
        return False


async def hit_rate_limit(
    pool: redis.Redis,
    name: str,
    limit: int,
    window_seconds: int = 60,
) -> bool:
    """Count one request against a fixed window and report whether it is over.

    Args:
        pool: Redis connection pool.
        name: Limit bucket, e.g. ``"kvk"``.
        limit: Maximum requests allowed in the window.
        window_seconds: Window length.

    Returns:
        True when this request exceeds the limit and must be refused.
    """
    window = int(time.time() // window_seconds)
    key = f"ratelimit:{name}:{window}"
    # incr and expire are applied together in one MULTI/EXEC
    async with pool.pipeline(transaction=True) as pipe:
        count, _ = await pipe.incr(key).expire(key, window_seconds).execute()
    if count > limit:
        logger.warning("rate_limit_exceeded", bucket=name, count=count, limit=limit)
        return True
    return False
