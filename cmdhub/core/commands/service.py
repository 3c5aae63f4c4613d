# cmdhub/core/commands/service.py
"""Command store operations.

Wraps the repository with validation, read-through caching, the update
rate limit and cache invalidation on every mutation. Nothing here talks to
Discord; convergence with the remote registry happens on deploy.
"""

import logging
from dataclasses import dataclass
from typing import Any

from cmdhub.core.cache import CommandCache
from cmdhub.core.commands.models import (
    Command,
    CommandFilters,
    DeploymentStatus,
    normalize_name,
    validate_category,
    validate_description,
    validate_name,
)
from cmdhub.core.commands.repository import CommandRepository, utcnow
from cmdhub.core.errors import NotFound, ValidationFailure
from cmdhub.core.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

UPDATE_ACTION = "update"

# Fields an update may change
UPDATABLE_FIELDS = frozenset(
    {
        "description",
        "options",
        "category",
        "enabled",
        "default_member_permissions",
        "dm_permission",
    }
)


@dataclass
class RestoreResult:
    """Outcome of a restore.

    Attributes:
        command: The restored command.
        needs_deploy: True when the command has no remote registration and
            the caller must trigger a deploy to re-create it.
    """

    command: Command
    needs_deploy: bool


class CommandService:
    """Authoritative store for slash command definitions."""

    def __init__(
        self,
        repository: CommandRepository,
        cache: CommandCache,
        limiter: RateLimiter,
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.limiter = limiter

    async def create(self, data: dict[str, Any], created_by: str = "system") -> Command:
        """Create a new command.

        Args:
            data: Command fields (name and description required).
            created_by: Attribution for the audit trail.

        Returns:
            The stored Command.

        Raises:
            ValidationFailure: If name, description or category is malformed.
            Conflict: If a live command with the same (name, scope) exists.
        """
        unknown = set(data) - UPDATABLE_FIELDS - {"name", "guild_id"}
        if unknown:
            raise ValidationFailure(f"Unknown command fields: {', '.join(sorted(unknown))}")

        command = Command(
            name=validate_name(data.get("name", "")),
            description=validate_description(data.get("description", "")),
            guild_id=data.get("guild_id") or None,
            options=data.get("options") or [],
            category=validate_category(data.get("category")),
            enabled=data.get("enabled", True) is not False,
            default_member_permissions=data.get("default_member_permissions"),
            dm_permission=bool(data.get("dm_permission", False)),
            created_by=created_by,
            updated_by=created_by,
        )
        command = await self.repository.create(command)
        await self.cache.invalidate_all()

        logger.info("Command created: %s (scope=%s)", command.name, command.guild_id or "global")
        return command

    async def get(self, name: str, guild_id: str | None = None) -> Command | None:
        """Read a live command through the cache."""
        key = self.cache.detail_key(normalize_name(name), guild_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return Command.from_dict(cached)

        command = await self.repository.get(name, guild_id)
        if command is not None:
            await self.cache.set(key, command.to_dict())
        return command

    async def require(self, name: str, guild_id: str | None = None) -> Command:
        """Read a live command straight from the store.

        Raises:
            NotFound: If no live command matches.
        """
        command = await self.repository.get(name, guild_id)
        if command is None:
            raise NotFound(f"Command not found: {name}")
        return command

    async def top_commands(self, limit: int = 10) -> list[Command]:
        """Most used live, enabled commands."""
        return await self.repository.top_commands(limit)

    async def list(self, filters: CommandFilters | None = None) -> list[Command]:
        """List commands through the cache."""
        filters = filters or CommandFilters()
        key = self.cache.list_key(filters.cache_fragment())
        cached = await self.cache.get(key)
        if cached is not None:
            return [Command.from_dict(item) for item in cached]

        commands = await self.repository.find(filters)
        await self.cache.set(key, [command.to_dict() for command in commands])
        return commands

    async def update(
        self,
        name: str,
        changes: dict[str, Any],
        updated_by: str = "system",
        guild_id: str | None = None,
    ) -> Command:
        """Merge changes into a live command.

        Bumps the version and marks the command outdated. Updates are
        limited per command name.

        Raises:
            RateLimited: If the command's update quota is exhausted.
            NotFound: If no live command matches.
            ValidationFailure: If a changed field is malformed or unknown.
        """
        normalized = normalize_name(name)
        await self.limiter.enforce(UPDATE_ACTION, normalized)

        command = await self.require(normalized, guild_id)

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationFailure(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        if "description" in changes:
            command.description = validate_description(changes["description"])
        if "category" in changes:
            command.category = validate_category(changes["category"])
        if "options" in changes:
            command.options = changes["options"] or []
        if "enabled" in changes:
            command.enabled = bool(changes["enabled"])
        if "default_member_permissions" in changes:
            command.default_member_permissions = changes["default_member_permissions"]
        if "dm_permission" in changes:
            command.dm_permission = bool(changes["dm_permission"])

        command.updated_by = updated_by
        command.version += 1
        command.deployment.status = DeploymentStatus.OUTDATED

        command = await self.repository.save(command)
        await self.limiter.increment(UPDATE_ACTION, normalized)
        await self.cache.invalidate_all()

        logger.info("Command updated: %s (v%d)", command.name, command.version)
        return command

    async def soft_delete(self, name: str, guild_id: str | None = None) -> Command:
        """Hide a command locally. Its Discord registration is left alone.

        Raises:
            NotFound: If the command is absent or already deleted.
        """
        command = await self.require(name, guild_id)
        command.deleted_at = utcnow()
        command = await self.repository.save(command)
        await self.cache.invalidate_all()

        logger.info("Command deleted: %s", command.name)
        return command

    async def restore(self, name: str, guild_id: str | None = None) -> RestoreResult:
        """Bring back the most recently soft-deleted command.

        Raises:
            NotFound: If there is no deleted command for (name, scope).
            Conflict: If a live command took the (name, scope) meanwhile.
        """
        command = await self.repository.get_deleted(name, guild_id)
        if command is None:
            raise NotFound(f"Deleted command not found: {name}")

        command.deleted_at = None
        command.deployment.status = DeploymentStatus.PENDING
        command = await self.repository.save(command)
        await self.cache.invalidate_all()

        needs_deploy = command.registry.id is None
        logger.info("Command restored: %s (needs deploy: %s)", command.name, needs_deploy)
        return RestoreResult(command=command, needs_deploy=needs_deploy)

    async def toggle(
        self,
        name: str,
        guild_id: str | None = None,
        enabled: bool | None = None,
        updated_by: str = "system",
    ) -> Command:
        """Flip (or set) enabled and mark the command outdated.

        Raises:
            NotFound: If no live command matches.
        """
        command = await self.require(name, guild_id)
        command.enabled = (not command.enabled) if enabled is None else enabled
        command.updated_by = updated_by
        command.deployment.status = DeploymentStatus.OUTDATED
        command = await self.repository.save(command)
        await self.cache.invalidate_all()

        logger.info("Command %s: %s", "enabled" if command.enabled else "disabled", command.name)
        return command

    async def record_usage(
        self,
        name: str,
        guild_id: str | None = None,
        used_in_guild: str | None = None,
    ) -> None:
        """Count one invocation. Called by the bot's command dispatcher.

        Never raises for unknown commands; usage bookkeeping must not break
        command handling.
        """
        updated = await self.repository.record_usage(name, guild_id, used_in_guild)
        if not updated:
            logger.debug("Usage not recorded, unknown command: %s", name)

    async def stats(self, top: int = 5) -> dict[str, Any]:
        """Counts per state, top commands and active rate limit counters."""
        summary = await self.repository.count_summary()
        top_commands = await self.top_commands(top)
        counters = await self.limiter.active_counters()
        summary["top_commands"] = [
            {"name": c.name, "guild_id": c.guild_id, "uses": c.stats.total_uses}
            for c in top_commands
        ]
        summary["rate_limit"] = [
            {
                "action": s.action,
                "identifier": s.identifier,
                "count": s.count,
                "remaining": s.remaining,
                "reset_in": s.reset_in,
                "blocked": s.blocked,
            }
            for s in counters
        ]
        return summary
