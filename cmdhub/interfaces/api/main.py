# cmdhub/interfaces/api/main.py
"""FastAPI application for the command registry.

Provides the REST API used by the admin dashboard: command CRUD against
the local store, plus sync, deploy and orphan removal against Discord.
Domain errors are rendered as {"success": false, "error": ...} bodies.
"""

import logging
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Load environment variables from .env file
load_dotenv()

from cmdhub.config import settings  # noqa: E402
from cmdhub.core.commands.models import (  # noqa: E402
    CommandFilters,
    DeploymentStatus,
    normalize_name,
    validate_category,
)
from cmdhub.core.commands.service import UPDATE_ACTION, CommandService  # noqa: E402
from cmdhub.core.container import get_container  # noqa: E402
from cmdhub.core.errors import CmdhubError, NotFound, RateLimited  # noqa: E402
from cmdhub.core.lifecycle import get_lifecycle_manager  # noqa: E402
from cmdhub.core.registry.reconciler import (  # noqa: E402
    DEPLOY_ACTION,
    SYNC_ACTION,
    Reconciler,
)
from cmdhub.interfaces.api.schemas import (  # noqa: E402
    CommandCreate,
    CommandEnvelope,
    CommandListEnvelope,
    CommandResponse,
    CommandUpdate,
    DeployEnvelope,
    ErrorResponse,
    OrphanRemovalRequest,
    OrphanResponse,
    RateLimitInfo,
    RemoteListEnvelope,
    RestoreEnvelope,
    ScopeRequest,
    StatsEnvelope,
    SyncEnvelope,
    ToggleRequest,
)
from cmdhub.interfaces.api.security import (  # noqa: E402
    get_operator_id,
    get_rate_limit_string,
    limiter,
    verify_api_key,
)
from cmdhub.utils.logging import (  # noqa: E402
    configure_structured_logging,
    set_request_context,
)
from cmdhub.utils.observability import setup_logfire  # noqa: E402

logger = logging.getLogger(__name__)


def get_service() -> CommandService:
    return get_container().service


def get_reconciler() -> Reconciler:
    return get_container().reconciler


ApiKey = Annotated[str, Depends(verify_api_key)]
Operator = Annotated[str, Depends(get_operator_id)]
Service = Annotated[CommandService, Depends(get_service)]
Engine = Annotated[Reconciler, Depends(get_reconciler)]
GuildQuery = Annotated[str | None, Query(alias="guildId")]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    configure_structured_logging(settings.log_level.upper())
    setup_logfire(app)

    if settings.registry_configured:
        logger.info("Discord registry configured - sync and deploy available")
    else:
        logger.warning(
            "DISCORD_TOKEN or DISCORD_APPLICATION_ID not set - sync/deploy disabled"
        )

    lifecycle = get_lifecycle_manager()
    get_container().register(lifecycle)
    await lifecycle.startup()

    yield

    await lifecycle.shutdown()
    logger.info("Shutting down...")


app = FastAPI(
    title="cmdhub",
    description="Discord slash command registry and reconciliation API",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag every log line of a request with its correlation ID and operator."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    set_request_context(request_id, request.headers.get("X-User-Id", ""))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(CmdhubError)
async def handle_domain_error(request: Request, exc: CmdhubError) -> JSONResponse:
    """Render domain errors as {success: false, error} with their status."""
    body = ErrorResponse(error=exc.message)
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimited):
        body.rate_limit = RateLimitInfo(remaining=exc.remaining, reset_in=exc.reset_in)
        headers["X-RateLimit-Remaining"] = str(exc.remaining)
        headers["X-RateLimit-Reset"] = str(exc.reset_in)

    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)

    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


def _scope(body_guild_id: str | None, query_guild_id: str | None) -> str | None:
    return body_guild_id or query_guild_id or None


@app.get("/health")
@limiter.limit(get_rate_limit_string)
async def health_check(request: Request) -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        Dictionary with health status and registry availability.
    """
    return {
        "status": "healthy",
        "registry_configured": settings.registry_configured,
    }


@app.get("/commands", response_model=CommandListEnvelope | RemoteListEnvelope)
@limiter.limit(get_rate_limit_string)
async def list_commands(
    request: Request,
    service: Service,
    engine: Engine,
    _api_key: ApiKey,
    category: str | None = None,
    enabled: bool | None = None,
    guild_id: GuildQuery = None,
    status: DeploymentStatus | None = None,
    deleted: bool = False,
    source: str | None = None,
) -> CommandListEnvelope | RemoteListEnvelope:
    """List commands from the store, or straight from Discord with source=discord."""
    if source == "discord":
        remote = await engine.list_remote(guild_id)
        return RemoteListEnvelope(count=len(remote), data=remote)

    filters = CommandFilters(
        category=validate_category(category) if category else None,
        enabled=enabled,
        guild_id=guild_id,
        scoped=guild_id is not None,
        status=status,
        deleted=deleted,
    )
    commands = await service.list(filters)
    return CommandListEnvelope(
        count=len(commands),
        data=[CommandResponse.from_command(cmd) for cmd in commands],
    )


@app.get("/commands/stats", response_model=StatsEnvelope)
@limiter.limit(get_rate_limit_string)
async def get_stats(request: Request, service: Service, _api_key: ApiKey) -> StatsEnvelope:
    """Counts per deployment state, top commands and active rate limits."""
    return StatsEnvelope(data=await service.stats())


@app.get("/commands/rate-limit")
@limiter.limit(get_rate_limit_string)
async def get_rate_limit_status(
    request: Request, service: Service, engine: Engine, _api_key: ApiKey
) -> dict[str, Any]:
    """Current counters and the remaining sync/deploy budget."""
    rate_limiter = service.limiter
    actions: dict[str, Any] = {}
    for action in (SYNC_ACTION, DEPLOY_ACTION):
        decision = await rate_limiter.check(action, engine.application_id or "system")
        actions[action] = {
            "remaining": decision.remaining,
            "resetIn": decision.reset_in,
            "blocked": not decision.allowed,
            "state": str(decision.kind),
        }

    counters = await rate_limiter.active_counters()
    return {
        "success": True,
        "maxAttempts": rate_limiter.max_attempts,
        "windowSeconds": rate_limiter.window_seconds,
        "actions": actions,
        "active": [
            {
                "action": s.action,
                "identifier": s.identifier,
                "count": s.count,
                "remaining": s.remaining,
                "resetIn": s.reset_in,
                "blocked": s.blocked,
            }
            for s in counters
        ],
    }


@app.post("/commands/sync", response_model=SyncEnvelope)
@limiter.limit(get_rate_limit_string)
async def sync_from_discord(
    request: Request,
    engine: Engine,
    _api_key: ApiKey,
    body: ScopeRequest | None = None,
    guild_id: GuildQuery = None,
) -> SyncEnvelope:
    """Pull the registered commands of a scope from Discord."""
    result = await engine.sync_from_discord(_scope(body and body.guild_id, guild_id))
    return SyncEnvelope(
        matched=result.matched,
        orphans=[OrphanResponse(**orphan.to_dict()) for orphan in result.orphans],
        count=len(result.matched),
    )


@app.post("/commands/deploy", response_model=DeployEnvelope)
@limiter.limit(get_rate_limit_string)
async def deploy_to_discord(
    request: Request,
    engine: Engine,
    _api_key: ApiKey,
    body: ScopeRequest | None = None,
    guild_id: GuildQuery = None,
) -> DeployEnvelope:
    """Push the enabled commands of a scope to Discord."""
    result = await engine.deploy_to_discord(_scope(body and body.guild_id, guild_id))
    return DeployEnvelope(
        deployed=len(result.deployed),
        commands=result.deployed,
        removed=result.removed,
        disabled_cleared=result.disabled_cleared,
    )


@app.post("/commands/remove-orphan-from-discord")
@limiter.limit(get_rate_limit_string)
async def remove_orphan_from_discord(
    request: Request,
    orphan: OrphanRemovalRequest,
    engine: Engine,
    _api_key: ApiKey,
) -> dict[str, Any]:
    """Delete a command that exists on Discord but not in the store."""
    result = await engine.remove_orphan_from_discord(orphan.name, orphan.guild_id)
    return {"success": True, **result}


@app.get("/commands/{name}", response_model=CommandEnvelope)
@limiter.limit(get_rate_limit_string)
async def get_command(
    request: Request,
    name: str,
    service: Service,
    _api_key: ApiKey,
    guild_id: GuildQuery = None,
) -> CommandEnvelope:
    """Get a live command by name and scope."""
    command = await service.get(name, guild_id)
    if command is None:
        raise NotFound(f"Command not found: {name}")
    return CommandEnvelope(data=CommandResponse.from_command(command))


@app.post("/commands", status_code=201, response_model=CommandEnvelope)
@limiter.limit(get_rate_limit_string)
async def create_command(
    request: Request,
    cmd_request: CommandCreate,
    service: Service,
    operator: Operator,
    _api_key: ApiKey,
) -> CommandEnvelope:
    """Create a new command in the store (not yet deployed)."""
    command = await service.create(cmd_request.model_dump(), created_by=operator)
    return CommandEnvelope(data=CommandResponse.from_command(command))


@app.put("/commands/{name}", response_model=CommandEnvelope)
@limiter.limit(get_rate_limit_string)
async def update_command(
    request: Request,
    response: Response,
    name: str,
    cmd_request: CommandUpdate,
    service: Service,
    operator: Operator,
    _api_key: ApiKey,
    guild_id: GuildQuery = None,
) -> CommandEnvelope:
    """Update a command. Limited per command name."""
    command = await service.update(
        name,
        cmd_request.changes(),
        updated_by=operator,
        guild_id=_scope(cmd_request.guild_id, guild_id),
    )
    decision = await service.limiter.check(UPDATE_ACTION, normalize_name(name))
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = str(decision.reset_in)
    return CommandEnvelope(data=CommandResponse.from_command(command))


@app.patch("/commands/{name}/toggle", response_model=CommandEnvelope)
@limiter.limit(get_rate_limit_string)
async def toggle_command(
    request: Request,
    name: str,
    service: Service,
    operator: Operator,
    _api_key: ApiKey,
    body: ToggleRequest | None = None,
    guild_id: GuildQuery = None,
) -> CommandEnvelope:
    """Enable or disable a command; takes effect on the next deploy."""
    command = await service.toggle(
        name,
        _scope(body and body.guild_id, guild_id),
        enabled=body.enabled if body else None,
        updated_by=operator,
    )
    return CommandEnvelope(data=CommandResponse.from_command(command))


@app.post("/commands/{name}/restore", response_model=RestoreEnvelope)
@limiter.limit(get_rate_limit_string)
async def restore_command(
    request: Request,
    name: str,
    engine: Engine,
    _api_key: ApiKey,
    body: ScopeRequest | None = None,
    guild_id: GuildQuery = None,
) -> RestoreEnvelope:
    """Undo a soft delete, redeploying the scope if the command left Discord."""
    outcome = await engine.restore_command(name, _scope(body and body.guild_id, guild_id))
    return RestoreEnvelope(
        deployed_to_discord=outcome.deployed_to_discord,
        redeploy_triggered=outcome.redeploy_triggered,
        deploy_error=outcome.error,
        data=CommandResponse.from_command(outcome.command),
    )


@app.delete("/commands/{name}/discord", response_model=CommandEnvelope)
@limiter.limit(get_rate_limit_string)
async def delete_from_discord(
    request: Request,
    name: str,
    engine: Engine,
    _api_key: ApiKey,
    body: ScopeRequest | None = None,
    guild_id: GuildQuery = None,
) -> CommandEnvelope:
    """Remove a command's registration from Discord, keeping it locally."""
    command = await engine.delete_from_discord(name, _scope(body and body.guild_id, guild_id))
    return CommandEnvelope(data=CommandResponse.from_command(command))


@app.delete("/commands/{name}", response_model=CommandEnvelope)
@limiter.limit(get_rate_limit_string)
async def delete_command(
    request: Request,
    name: str,
    service: Service,
    _api_key: ApiKey,
    body: ScopeRequest | None = None,
    guild_id: GuildQuery = None,
) -> CommandEnvelope:
    """Soft delete a command. Its Discord registration is left untouched."""
    command = await service.soft_delete(name, _scope(body and body.guild_id, guild_id))
    return CommandEnvelope(data=CommandResponse.from_command(command))


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("cmdhub.interfaces.api.main:app", host="0.0.0.0", port=8000)
