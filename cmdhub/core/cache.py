# cmdhub/core/cache.py
"""Read-through cache for command reads.

Entries live under a single Redis namespace that is wiped as a whole on
every mutation. Any Redis failure degrades to a cache miss.
"""

import json
import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cmdhub:commands:"
DEFAULT_TTL_SECONDS = 300


class CommandCache:
    """JSON cache over Redis for command list and detail reads."""

    def __init__(self, redis: Redis, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._redis = redis
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def list_key(fragment: str) -> str:
        return f"{CACHE_PREFIX}all:{fragment}"

    @staticmethod
    def detail_key(name: str, guild_id: str | None) -> str:
        return f"{CACHE_PREFIX}name:{guild_id or 'global'}:{name}"

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None on miss or cache failure."""
        try:
            cached = await self._redis.get(key)
        except RedisError as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if cached is None:
            return None
        logger.debug("Cache HIT: %s", key)
        return json.loads(cached)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        try:
            await self._redis.set(key, json.dumps(value), ex=ttl or self.ttl_seconds)
        except RedisError as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    async def invalidate_all(self) -> int:
        """Delete every key in the command cache namespace.

        Returns:
            Number of keys removed (0 on failure).
        """
        try:
            keys = [key async for key in self._redis.scan_iter(match=f"{CACHE_PREFIX}*")]
            if not keys:
                return 0
            removed = await self._redis.delete(*keys)
        except RedisError as e:
            logger.warning("Cache invalidation failed: %s", e)
            return 0
        logger.debug("Cache invalidated (%d keys)", removed)
        return removed
