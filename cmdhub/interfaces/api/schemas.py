# cmdhub/interfaces/api/schemas.py
"""Pydantic models for FastAPI request/response validation.

Defines request and response schemas for the command registry endpoints.
Fields are exposed in camelCase (guildId, defaultMemberPermissions, ...)
and accepted in either camelCase or snake_case.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cmdhub.core.commands.models import Command


class CamelModel(BaseModel):
    """Base model serializing field names as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CommandCreate(CamelModel):
    """Request body for POST /commands.

    Attributes:
        name: Command name (normalized to lowercase, <= 32 chars).
        description: Description shown in Discord (<= 100 chars).
        guild_id: Guild scope, omitted for a global command.
    """

    name: str = Field(..., description="Command name")
    description: str = Field(..., description="Command description")
    options: list[dict[str, Any]] = Field(
        default_factory=list, description="Discord option schema"
    )
    category: str = Field("custom", description="Dashboard category")
    enabled: bool = Field(True, description="Whether deploys register the command")
    guild_id: str | None = Field(None, description="Guild scope (null = global)")
    default_member_permissions: str | None = Field(
        None, description="Permission bit set as a string"
    )
    dm_permission: bool = Field(False, description="Usable in direct messages")


class CommandUpdate(CamelModel):
    """Request body for PUT /commands/{name}.

    Only fields present in the body are changed. guild_id selects the
    command's scope and is never changed itself.
    """

    guild_id: str | None = Field(None, description="Scope of the command to update")
    description: str | None = None
    options: list[dict[str, Any]] | None = None
    category: str | None = None
    enabled: bool | None = None
    default_member_permissions: str | None = None
    dm_permission: bool | None = None

    def changes(self) -> dict[str, Any]:
        """Fields explicitly set in the request, excluding the scope.

        An explicit null only clears default_member_permissions.
        """
        data = self.model_dump(exclude_unset=True, exclude={"guild_id"}, by_alias=False)
        return {
            key: value
            for key, value in data.items()
            if value is not None or key == "default_member_permissions"
        }


class ToggleRequest(CamelModel):
    """Request body for PATCH /commands/{name}/toggle.

    enabled omitted flips the current value.
    """

    enabled: bool | None = None
    guild_id: str | None = None


class ScopeRequest(CamelModel):
    """Request body for sync, deploy and remote delete endpoints."""

    guild_id: str | None = None


class OrphanRemovalRequest(CamelModel):
    """Request body for POST /commands/remove-orphan-from-discord."""

    name: str = Field(..., description="Name of the remote-only command")
    guild_id: str | None = None


class RegistryMirrorResponse(CamelModel):
    id: str | None = None
    application_id: str | None = None
    version: str | None = None
    type: int = 1
    nsfw: bool = False
    integration_types: list[int] = Field(default_factory=list)
    contexts: list[int] | None = None
    handler: int | None = None


class DeploymentResponse(CamelModel):
    status: str
    last_deployed: datetime | None = None
    last_synced: datetime | None = None
    last_error: str | None = None
    deploy_count: int = 0


class UsageResponse(CamelModel):
    total_uses: int = 0
    uses_today: int = 0
    last_used: datetime | None = None
    guild_usage: dict[str, int] = Field(default_factory=dict)


class CommandResponse(CamelModel):
    """A stored command as returned by every command endpoint."""

    id: int
    name: str
    description: str
    guild_id: str | None = None
    options: list[dict[str, Any]] = Field(default_factory=list)
    category: str
    enabled: bool
    default_member_permissions: str | None = None
    dm_permission: bool = False
    version: int
    created_by: str
    updated_by: str
    discord: RegistryMirrorResponse
    deployment: DeploymentResponse
    stats: UsageResponse
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_command(cls, cmd: Command) -> "CommandResponse":
        data = cmd.to_dict()
        data["discord"] = data.pop("registry")
        return cls.model_validate(data)


class CommandEnvelope(CamelModel):
    success: bool = True
    data: CommandResponse


class CommandListEnvelope(CamelModel):
    success: bool = True
    source: str = "database"
    count: int
    data: list[CommandResponse]


class RemoteListEnvelope(CamelModel):
    """Commands as Discord reports them (GET /commands?source=discord)."""

    success: bool = True
    source: str = "discord"
    count: int
    data: list[dict[str, Any]]


class StatsEnvelope(CamelModel):
    success: bool = True
    data: dict[str, Any]


class RestoreEnvelope(CamelModel):
    success: bool = True
    restored: bool = True
    deployed_to_discord: bool
    redeploy_triggered: bool
    deploy_error: str | None = None
    data: CommandResponse


class OrphanResponse(CamelModel):
    """A command registered on Discord with no local record."""

    name: str
    id: str | None = None
    description: str = ""
    guild_id: str | None = None


class SyncEnvelope(CamelModel):
    success: bool = True
    matched: list[str]
    orphans: list[OrphanResponse]
    count: int


class DeployEnvelope(CamelModel):
    success: bool = True
    deployed: int
    commands: list[str]
    removed: list[str]
    disabled_cleared: list[str]


class RateLimitInfo(CamelModel):
    remaining: int
    reset_in: int


class ErrorResponse(CamelModel):
    """Body of every failed request."""

    success: bool = False
    error: str
    rate_limit: RateLimitInfo | None = None
