"""Redis-backed JSON cache for registry lookup results."""

from typing import TYPE_CHECKING, Any

import orjson

from src.core.logging import get_logger

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = get_logger(__name__)


class RegistryCache:
    """Namespaced key/value cache with a fixed TTL per entry.

    Values are JSON objects serialized with orjson. Entries expire in Redis,
    so the cache is shared between workers and survives restarts.
    """

    def __init__(self, pool: "redis.Redis", namespace: str, ttl_seconds: int) -> None:
        self._redis = pool
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"registry_cache:{self.namespace}:{key}"

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("registry_cache_corrupt_entry", namespace=self.namespace, key=key)
            await self._redis.delete(self._key(key))
            return None

    async def set(self, key: str, value: dict[str, Any]) -> None:
        payload = orjson.dumps(value, default=str).decode("utf-8")
        await self._redis.set(self._key(key), payload, ex=self.ttl_seconds)

    async def size(self) -> int:
        count = 0
        async for _ in self._redis.scan_iter(match=self._key("*")):
            count += 1
        return count

    async def clear(self) -> int:
        """Drop every entry in this namespace and return how many were removed."""
        keys = [key async for key in self._redis.scan_iter(match=self._key("*"))]
        if keys:
            await self._redis.delete(*keys)
        logger.info("registry_cache_cleared", namespace=self.namespace, removed=len(keys))
        return len(keys)
