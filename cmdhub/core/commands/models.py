# cmdhub/core/commands/models.py
"""Command data model for Discord slash command registration.

This module defines the Command dataclass which represents a slash command
as stored locally, together with the mirror of what Discord reports for it,
its deployment state and its usage statistics.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum, StrEnum
from typing import Any

from cmdhub.core.errors import ValidationFailure

NAME_MAX_LENGTH = 32
DESCRIPTION_MAX_LENGTH = 100

# Discord accepts dashes, underscores and unicode letters/digits
_NAME_PATTERN = re.compile(r"^[-_\w]{1,32}$")


class CommandCategory(StrEnum):
    """Closed set of dashboard categories."""

    UTILITY = "utility"
    MODERATION = "moderation"
    FUN = "fun"
    AI = "ai"
    CUSTOM = "custom"
    SYSTEM = "system"


class DeploymentStatus(StrEnum):
    """Deployment state machine.

    pending -> deployed -> outdated -> deployed; pending|outdated -> failed;
    synced is only reached through a pull from Discord.
    """

    PENDING = "pending"
    DEPLOYED = "deployed"
    OUTDATED = "outdated"
    FAILED = "failed"
    SYNCED = "synced"


class CommandType(IntEnum):
    """Discord application command types."""

    CHAT_INPUT = 1
    USER = 2
    MESSAGE = 3


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class RegistryMirror:
    """What Discord reports for a command.

    id, application_id and version stay None until the command has been
    pushed successfully at least once.
    """

    id: str | None = None
    application_id: str | None = None
    version: str | None = None
    type: int = int(CommandType.CHAT_INPUT)
    nsfw: bool = False
    integration_types: list[int] = field(default_factory=list)
    contexts: list[int] | None = None
    handler: int | None = None


@dataclass
class DeploymentState:
    """Deployment bookkeeping for a command."""

    status: DeploymentStatus = DeploymentStatus.PENDING
    last_deployed: datetime | None = None
    last_synced: datetime | None = None
    last_error: str | None = None
    deploy_count: int = 0


@dataclass
class UsageStats:
    """Usage counters maintained by the bot's command dispatcher."""

    total_uses: int = 0
    uses_today: int = 0
    last_used: datetime | None = None
    guild_usage: dict[str, int] = field(default_factory=dict)


@dataclass
class Command:
    """Represents a Discord slash command owned by this application.

    Identity is the pair (name, guild_id); guild_id None means the command
    is registered globally.

    Attributes:
        name: Command name (lowercase normalized, at most 32 chars).
        description: Description shown in the Discord client (<= 100 chars).
        guild_id: Guild scope, or None for global commands.
        options: Argument schema, passed through to Discord untouched.
        category: Dashboard category.
        enabled: Disabled commands are removed from Discord on deploy.
        default_member_permissions: Permission bit set as a string.
        dm_permission: Whether the command is usable in DMs.
        version: Local version, bumped on every content update.
        created_by: Who created the command.
        updated_by: Who last changed the command.
        registry: Mirror of the Discord-side registration.
        deployment: Deployment status and history.
        stats: Usage counters.
        deleted_at: Soft delete timestamp, None while the command is live.
        id: Database row ID (0 until persisted).

    Example:
        >>> cmd = Command(name="ping", description="Check latency")
        >>> cmd.to_registry_payload()
        {'name': 'ping', 'description': 'Check latency', 'type': 1, 'dm_permission': False}
    """

    name: str
    description: str
    guild_id: str | None = None
    options: list[dict[str, Any]] = field(default_factory=list)
    category: CommandCategory = CommandCategory.CUSTOM
    enabled: bool = True
    default_member_permissions: str | None = None
    dm_permission: bool = False
    version: int = 1
    created_by: str = "system"
    updated_by: str = "system"
    registry: RegistryMirror = field(default_factory=RegistryMirror)
    deployment: DeploymentState = field(default_factory=DeploymentState)
    stats: UsageStats = field(default_factory=UsageStats)
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: int = 0

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def needs_redeploy(self) -> bool:
        """Whether the next deploy has to push this command."""
        return self.registry.id is None or self.deployment.status in (
            DeploymentStatus.PENDING,
            DeploymentStatus.OUTDATED,
            DeploymentStatus.FAILED,
        )

    def to_registry_payload(self) -> dict[str, Any]:
        """Serialize to the Discord application command shape.

        Returns:
            Dictionary suitable for the bulk overwrite endpoint.
        """
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "type": int(self.registry.type or CommandType.CHAT_INPUT),
        }
        if self.options:
            data["options"] = self.options
        if self.default_member_permissions:
            data["default_member_permissions"] = self.default_member_permissions
        data["dm_permission"] = self.dm_permission
        if self.registry.nsfw:
            data["nsfw"] = True
        return data

    def apply_registry_data(self, data: dict[str, Any]) -> None:
        """Copy identifiers and metadata from a Discord command object.

        Args:
            data: Command object as returned by the Discord API.
        """
        self.registry = RegistryMirror(
            id=data.get("id"),
            application_id=data.get("application_id"),
            version=data.get("version"),
            type=int(data.get("type") or CommandType.CHAT_INPUT),
            nsfw=bool(data.get("nsfw", False)),
            integration_types=data.get("integration_types") or [],
            contexts=data.get("contexts"),
            handler=data.get("handler"),
        )

    def clear_registry_id(self) -> None:
        """Forget the remote registration so the next deploy re-creates it."""
        self.registry.id = None
        self.registry.version = None
        self.deployment.status = DeploymentStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary.

        Returns:
            Dictionary representation of the command.
        """
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "guild_id": self.guild_id,
            "options": self.options,
            "category": str(self.category),
            "enabled": self.enabled,
            "default_member_permissions": self.default_member_permissions,
            "dm_permission": self.dm_permission,
            "version": self.version,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "registry": {
                "id": self.registry.id,
                "application_id": self.registry.application_id,
                "version": self.registry.version,
                "type": self.registry.type,
                "nsfw": self.registry.nsfw,
                "integration_types": self.registry.integration_types,
                "contexts": self.registry.contexts,
                "handler": self.registry.handler,
            },
            "deployment": {
                "status": str(self.deployment.status),
                "last_deployed": _dt(self.deployment.last_deployed),
                "last_synced": _dt(self.deployment.last_synced),
                "last_error": self.deployment.last_error,
                "deploy_count": self.deployment.deploy_count,
            },
            "stats": {
                "total_uses": self.stats.total_uses,
                "uses_today": self.stats.uses_today,
                "last_used": _dt(self.stats.last_used),
                "guild_usage": self.stats.guild_usage,
            },
            "deleted_at": _dt(self.deleted_at),
            "created_at": _dt(self.created_at),
            "updated_at": _dt(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Command":
        """Create from dictionary produced by to_dict().

        Args:
            data: Dictionary with command data.

        Returns:
            Command instance.
        """
        registry = data.get("registry") or {}
        deployment = data.get("deployment") or {}
        stats = data.get("stats") or {}
        return cls(
            id=data.get("id", 0),
            name=data["name"],
            description=data["description"],
            guild_id=data.get("guild_id"),
            options=data.get("options") or [],
            category=CommandCategory(data.get("category", CommandCategory.CUSTOM)),
            enabled=data.get("enabled", True),
            default_member_permissions=data.get("default_member_permissions"),
            dm_permission=data.get("dm_permission", False),
            version=data.get("version", 1),
            created_by=data.get("created_by", "system"),
            updated_by=data.get("updated_by", "system"),
            registry=RegistryMirror(
                id=registry.get("id"),
                application_id=registry.get("application_id"),
                version=registry.get("version"),
                type=registry.get("type", int(CommandType.CHAT_INPUT)),
                nsfw=registry.get("nsfw", False),
                integration_types=registry.get("integration_types") or [],
                contexts=registry.get("contexts"),
                handler=registry.get("handler"),
            ),
            deployment=DeploymentState(
                status=DeploymentStatus(deployment.get("status", "pending")),
                last_deployed=_parse_dt(deployment.get("last_deployed")),
                last_synced=_parse_dt(deployment.get("last_synced")),
                last_error=deployment.get("last_error"),
                deploy_count=deployment.get("deploy_count", 0),
            ),
            stats=UsageStats(
                total_uses=stats.get("total_uses", 0),
                uses_today=stats.get("uses_today", 0),
                last_used=_parse_dt(stats.get("last_used")),
                guild_usage=stats.get("guild_usage") or {},
            ),
            deleted_at=_parse_dt(data.get("deleted_at")),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class CommandFilters:
    """Query shape for listing commands.

    A field left at None does not constrain the query. guild_id is only
    applied when scoped is True, so that None can mean "global commands".
    """

    category: CommandCategory | None = None
    enabled: bool | None = None
    guild_id: str | None = None
    scoped: bool = False
    status: DeploymentStatus | None = None
    deleted: bool = False

    def cache_fragment(self) -> str:
        """Stable string form used as part of the cache key."""
        parts = [
            f"category={self.category or ''}",
            f"enabled={'' if self.enabled is None else int(self.enabled)}",
            f"guild={self.guild_id if self.scoped else '*'}",
            f"status={self.status or ''}",
            f"deleted={int(self.deleted)}",
        ]
        return "&".join(parts)


def normalize_name(name: str) -> str:
    return name.strip().lower()


def validate_name(name: str) -> str:
    """Normalize and validate a command name.

    Args:
        name: Raw command name.

    Returns:
        The lowercase, stripped name.

    Raises:
        ValidationFailure: If the name is empty, too long or contains
            characters Discord rejects.
    """
    normalized = normalize_name(name)
    if not normalized:
        raise ValidationFailure("Command name is required")
    if len(normalized) > NAME_MAX_LENGTH:
        raise ValidationFailure(
            f"Command name must be at most {NAME_MAX_LENGTH} characters"
        )
    if not _NAME_PATTERN.match(normalized):
        raise ValidationFailure(
            f"Invalid command name '{normalized}': use letters, digits, - or _"
        )
    return normalized


def validate_description(description: str) -> str:
    description = (description or "").strip()
    if not description:
        raise ValidationFailure("Command description is required")
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationFailure(
            f"Command description must be at most {DESCRIPTION_MAX_LENGTH} characters"
        )
    return description


def validate_category(category: str | CommandCategory | None) -> CommandCategory:
    if category is None:
        return CommandCategory.CUSTOM
    try:
        return CommandCategory(category)
    except ValueError:
        allowed = ", ".join(c.value for c in CommandCategory)
        raise ValidationFailure(
            f"Invalid category '{category}', expected one of: {allowed}"
        ) from None
