# cmdhub/core/redis_client.py
"""Shared Redis connection for the cache and the rate limiter."""

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RedisConnection:
    """Owns the process-wide async Redis client.

    The client connects lazily, so startup succeeds even when Redis is down;
    the cache and rate limiter then degrade on their own.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self.client: Redis = Redis.from_url(url, decode_responses=True)

    async def startup(self) -> None:
        try:
            await self.client.ping()
            logger.info("Redis connected")
        except RedisError as e:
            logger.warning("Redis unavailable at startup, running degraded: %s", e)

    async def shutdown(self) -> None:
        await self.client.aclose()
