# cmdhub/core/container.py
"""Wiring of the command registry components.

Builds the store, cache, rate limiter, Discord client and reconciler from
settings once per process.
"""

from dataclasses import dataclass

from cmdhub.config import Settings, settings
from cmdhub.core.cache import CommandCache
from cmdhub.core.commands.repository import CommandRepository
from cmdhub.core.commands.service import CommandService
from cmdhub.core.lifecycle import LifecycleManager
from cmdhub.core.ratelimit import RateLimiter
from cmdhub.core.redis_client import RedisConnection
from cmdhub.core.registry.client import DiscordRegistryClient
from cmdhub.core.registry.reconciler import Reconciler


@dataclass
class Container:
    repository: CommandRepository
    redis: RedisConnection
    registry: DiscordRegistryClient
    service: CommandService
    reconciler: Reconciler

    @property
    def limiter(self) -> RateLimiter:
        return self.service.limiter

    def register(self, lifecycle: LifecycleManager) -> None:
        """Register components in startup order."""
        lifecycle.register("command_store", self.repository)
        lifecycle.register("redis", self.redis)
        lifecycle.register("discord_registry", self.registry)


def build_container(config: Settings | None = None) -> Container:
    """Create every component from settings.

    Args:
        config: Settings to build from, the process settings by default.

    Returns:
        A Container whose components are not started yet.
    """
    config = config or settings
    repository = CommandRepository(db_path=config.database_path)
    redis = RedisConnection(config.redis_url)
    limiter = RateLimiter(
        redis.client,
        max_attempts=config.rate_limit_max_attempts,
        window_seconds=config.rate_limit_window_seconds,
    )
    cache = CommandCache(redis.client, ttl_seconds=config.cache_ttl_seconds)
    service = CommandService(repository, cache, limiter)
    registry = DiscordRegistryClient(
        token=config.discord_token,
        application_id=config.discord_application_id,
        api_base=config.discord_api_base,
        timeout=config.discord_request_timeout,
        max_attempts=config.discord_max_retries,
    )
    reconciler = Reconciler(service, registry)
    return Container(
        repository=repository,
        redis=redis,
        registry=registry,
        service=service,
        reconciler=reconciler,
    )


_container: Container | None = None


def get_container() -> Container:
    """Get the process-wide Container, building it on first use."""
    global _container
    if _container is None:
        _container = build_container()
    return _container


def reset_container() -> None:
    """Drop the process-wide Container (for testing)."""
    global _container
    _container = None
