"""Tests for the Redis command cache."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cmdhub.core.cache import CommandCache


class TestCommandCache:
    """Test suite for CommandCache."""

    def test_key_layout(self) -> None:
        assert CommandCache.detail_key("ping", None) == "cmdhub:commands:name:global:ping"
        assert CommandCache.detail_key("ping", "555") == "cmdhub:commands:name:555:ping"
        assert CommandCache.list_key("enabled=1") == "cmdhub:commands:all:enabled=1"

    @pytest.mark.asyncio
    async def test_set_and_get_json(self, cache: CommandCache):
        key = cache.detail_key("ping", None)
        await cache.set(key, {"name": "ping", "options": []})

        assert await cache.get(key) == {"name": "ping", "options": []}

    @pytest.mark.asyncio
    async def test_entries_expire(self, fake_redis, cache: CommandCache):
        """Test that entries are written with the configured TTL."""
        key = cache.list_key("x")
        await cache.set(key, [])

        ttl = await fake_redis.ttl(key)
        assert 0 < ttl <= 300

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, cache: CommandCache):
        assert await cache.get(cache.detail_key("missing", None)) is None

    @pytest.mark.asyncio
    async def test_invalidate_all_only_touches_namespace(self, fake_redis, cache: CommandCache):
        """Test that invalidation wipes command keys and nothing else."""
        await cache.set(cache.list_key("a"), [])
        await cache.set(cache.detail_key("ping", None), {})
        await fake_redis.set("cmdhub:ratelimit:update:ping", 3)

        removed = await cache.invalidate_all()

        assert removed == 2
        assert await cache.get(cache.list_key("a")) is None
        assert await fake_redis.get("cmdhub:ratelimit:update:ping") == "3"

    @pytest.mark.asyncio
    async def test_invalidate_empty_namespace(self, cache: CommandCache):
        assert await cache.invalidate_all() == 0

    @pytest.mark.asyncio
    async def test_failures_degrade_to_miss(self):
        """Test that Redis errors never propagate from the cache."""
        redis = MagicMock()
        redis.get = AsyncMock(side_effect=RedisConnectionError("down"))
        redis.set = AsyncMock(side_effect=RedisConnectionError("down"))
        redis.scan_iter.side_effect = RedisConnectionError("down")
        cache = CommandCache(redis)

        assert await cache.get("cmdhub:commands:all:x") is None
        await cache.set("cmdhub:commands:all:x", [])
        assert await cache.invalidate_all() == 0
