# tests/conftest.py
"""Shared pytest fixtures for all test modules.

Provides common fixtures for:
- Temporary database paths and an initialized command store
- An in-memory Redis (fakeredis) for the cache and rate limiter
- An in-memory stand-in for the Discord registry
- Singleton reset (container, lifecycle manager)
"""

import itertools
import os
import tempfile
from collections.abc import AsyncGenerator, Generator
from typing import Any

import pytest
from fakeredis import aioredis

from cmdhub.core.cache import CommandCache
from cmdhub.core.commands.repository import CommandRepository
from cmdhub.core.commands.service import CommandService
from cmdhub.core.errors import TransportFailure
from cmdhub.core.ratelimit import RateLimiter
from cmdhub.core.registry.reconciler import Reconciler

APPLICATION_ID = "100200300"


class FakeRegistry:
    """In-memory Discord application command registry.

    Mirrors the behavior of DiscordRegistryClient: per-scope command lists,
    Discord-assigned snowflake IDs, bulk overwrite and 404-tolerant delete.
    Failures can be injected per operation.
    """

    def __init__(self, application_id: str = APPLICATION_ID) -> None:
        self.application_id = application_id
        self.scopes: dict[str | None, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.fail_list = False
        self.fail_replace = False
        self.fail_delete = False
        self._ids = itertools.count(900000000000000001)

    def _entry(self, payload: dict[str, Any], guild_id: str | None) -> dict[str, Any]:
        existing = next(
            (c for c in self.scopes.get(guild_id, []) if c["name"] == payload["name"]),
            None,
        )
        command_id = existing["id"] if existing else str(next(self._ids))
        entry = {
            "id": command_id,
            "application_id": self.application_id,
            "version": str(next(self._ids)),
            "type": payload.get("type", 1),
            "name": payload["name"],
            "description": payload["description"],
            "dm_permission": payload.get("dm_permission", False),
            "nsfw": payload.get("nsfw", False),
            "integration_types": [0],
            "contexts": None,
        }
        if guild_id:
            entry["guild_id"] = guild_id
        if payload.get("options"):
            entry["options"] = payload["options"]
        return entry

    def seed(self, names: list[str], guild_id: str | None = None) -> list[dict[str, Any]]:
        """Register commands directly, bypassing the store."""
        entries = [
            self._entry({"name": name, "description": f"{name} command"}, guild_id)
            for name in names
        ]
        self.scopes.setdefault(guild_id, []).extend(entries)
        return entries

    def names(self, guild_id: str | None = None) -> list[str]:
        return sorted(c["name"] for c in self.scopes.get(guild_id, []))

    async def list_commands(self, guild_id: str | None = None) -> list[dict[str, Any]]:
        self.calls.append(("list", guild_id))
        if self.fail_list:
            raise TransportFailure("Discord API unreachable: list", upstream_status=503)
        return [dict(c) for c in self.scopes.get(guild_id, [])]

    async def create_command(
        self, payload: dict[str, Any], guild_id: str | None = None
    ) -> dict[str, Any]:
        self.calls.append(("create", guild_id))
        entry = self._entry(payload, guild_id)
        self.scopes.setdefault(guild_id, []).append(entry)
        return dict(entry)

    async def replace_commands(
        self, payloads: list[dict[str, Any]], guild_id: str | None = None
    ) -> list[dict[str, Any]]:
        self.calls.append(("replace", guild_id))
        if self.fail_replace:
            raise TransportFailure("Discord API rejected PUT: HTTP 500", upstream_status=500)
        entries = [self._entry(payload, guild_id) for payload in payloads]
        self.scopes[guild_id] = entries
        return [dict(e) for e in entries]

    async def delete_command(self, command_id: str, guild_id: str | None = None) -> bool:
        self.calls.append(("delete", guild_id))
        if self.fail_delete:
            raise TransportFailure("Discord API rejected DELETE: HTTP 500", upstream_status=500)
        commands = self.scopes.get(guild_id, [])
        remaining = [c for c in commands if c["id"] != command_id]
        self.scopes[guild_id] = remaining
        return len(remaining) != len(commands)


@pytest.fixture
def temp_db() -> Generator[str, None, None]:
    """Create a temporary database file path.

    Yields:
        Path to temporary SQLite database file.
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup, including WAL side files
    for path in (db_path, f"{db_path}-wal", f"{db_path}-shm"):
        if os.path.exists(path):
            os.unlink(path)


@pytest.fixture
async def repository(temp_db: str) -> CommandRepository:
    """Command store with its schema created."""
    repo = CommandRepository(db_path=temp_db)
    await repo.initialize()
    return repo


@pytest.fixture
async def fake_redis() -> AsyncGenerator[aioredis.FakeRedis, None]:
    """Fresh in-memory Redis per test."""
    client = aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def limiter(fake_redis: aioredis.FakeRedis) -> RateLimiter:
    return RateLimiter(fake_redis, max_attempts=5, window_seconds=3600)


@pytest.fixture
def cache(fake_redis: aioredis.FakeRedis) -> CommandCache:
    return CommandCache(fake_redis, ttl_seconds=300)


@pytest.fixture
def service(
    repository: CommandRepository, cache: CommandCache, limiter: RateLimiter
) -> CommandService:
    return CommandService(repository, cache, limiter)


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def reconciler(service: CommandService, fake_registry: FakeRegistry) -> Reconciler:
    return Reconciler(service, fake_registry)


@pytest.fixture
def reset_singletons() -> Generator[None, None, None]:
    """Reset the container and lifecycle singletons before and after test."""
    from cmdhub.core.container import reset_container
    from cmdhub.core.lifecycle import reset_lifecycle_manager

    reset_container()
    reset_lifecycle_manager()
    yield
    reset_container()
    reset_lifecycle_manager()
