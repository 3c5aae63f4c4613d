# cmdhub/core/commands/repository.py
"""SQLite repository for Command persistence.

This module provides async CRUD operations for commands using aiosqlite.
The (name, guild_id) uniqueness of live commands is enforced by a partial
unique index, so concurrent creates race safely to exactly one winner.
"""

import json
import logging
import os
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from cmdhub.core.commands.models import (
    Command,
    CommandCategory,
    CommandFilters,
    DeploymentState,
    DeploymentStatus,
    RegistryMirror,
    UsageStats,
    normalize_name,
)
from cmdhub.core.errors import Conflict, NotFound

logger = logging.getLogger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS commands (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        guild_id TEXT,
        description TEXT NOT NULL,
        options TEXT NOT NULL,
        category TEXT NOT NULL,
        enabled INTEGER NOT NULL,
        default_member_permissions TEXT,
        dm_permission INTEGER NOT NULL,
        version INTEGER NOT NULL,
        created_by TEXT NOT NULL,
        updated_by TEXT NOT NULL,
        registry_id TEXT,
        registry_application_id TEXT,
        registry_version TEXT,
        registry_type INTEGER NOT NULL,
        registry_nsfw INTEGER NOT NULL,
        registry_integration_types TEXT NOT NULL,
        registry_contexts TEXT,
        registry_handler INTEGER,
        deployment_status TEXT NOT NULL,
        last_deployed TEXT,
        last_synced TEXT,
        last_error TEXT,
        deploy_count INTEGER NOT NULL,
        total_uses INTEGER NOT NULL,
        uses_today INTEGER NOT NULL,
        last_used TEXT,
        guild_usage TEXT NOT NULL,
        deleted_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

_INDEXES = [
    # Live (name, scope) pairs are unique; global commands use '' as scope
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_commands_live_name_scope
    ON commands(name, COALESCE(guild_id, ''))
    WHERE deleted_at IS NULL
    """,
    "CREATE INDEX IF NOT EXISTS idx_commands_category ON commands(category)",
    "CREATE INDEX IF NOT EXISTS idx_commands_guild ON commands(guild_id)",
    "CREATE INDEX IF NOT EXISTS idx_commands_status ON commands(deployment_status)",
    "CREATE INDEX IF NOT EXISTS idx_commands_registry_id ON commands(registry_id)",
    "CREATE INDEX IF NOT EXISTS idx_commands_total_uses ON commands(total_uses DESC)",
]

# Columns written by create()/save(), in order
_COLUMNS = (
    "name",
    "guild_id",
    "description",
    "options",
    "category",
    "enabled",
    "default_member_permissions",
    "dm_permission",
    "version",
    "created_by",
    "updated_by",
    "registry_id",
    "registry_application_id",
    "registry_version",
    "registry_type",
    "registry_nsfw",
    "registry_integration_types",
    "registry_contexts",
    "registry_handler",
    "deployment_status",
    "last_deployed",
    "last_synced",
    "last_error",
    "deploy_count",
    "total_uses",
    "uses_today",
    "last_used",
    "guild_usage",
    "deleted_at",
    "created_at",
    "updated_at",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class CommandRepository:
    """Repository for storing and retrieving commands from SQLite.

    Every operation opens its own connection, which keeps the repository
    safe to share between concurrent coroutines.

    Attributes:
        db_path: Path to the SQLite database file.

    Example:
        >>> repo = CommandRepository(db_path="data/cmdhub.db")
        >>> await repo.initialize()
        >>> created = await repo.create(Command(name="ping", description="Pong"))
        >>> print(f"Created command with ID: {created.id}")
    """

    def __init__(self, db_path: str = "data/cmdhub.db") -> None:
        """Initialize the CommandRepository.

        Creates the database directory if it doesn't exist. The schema is
        created by initialize().

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path

        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    async def initialize(self) -> None:
        """Create the commands table and indexes, enable WAL mode."""
        async with aiosqlite.connect(self.db_path) as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute(_SCHEMA)
            for statement in _INDEXES:
                await conn.execute(statement)
            await conn.commit()
        logger.info("Command store ready at %s", self.db_path)

    # Lifecycle hook
    startup = initialize

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.db_path) as conn:
            conn.row_factory = aiosqlite.Row
            yield conn

    def _row_to_command(self, row: aiosqlite.Row) -> Command:
        """Convert a database row to a Command object."""
        return Command(
            id=row["id"],
            name=row["name"],
            guild_id=row["guild_id"],
            description=row["description"],
            options=json.loads(row["options"]),
            category=CommandCategory(row["category"]),
            enabled=bool(row["enabled"]),
            default_member_permissions=row["default_member_permissions"],
            dm_permission=bool(row["dm_permission"]),
            version=row["version"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
            registry=RegistryMirror(
                id=row["registry_id"],
                application_id=row["registry_application_id"],
                version=row["registry_version"],
                type=row["registry_type"],
                nsfw=bool(row["registry_nsfw"]),
                integration_types=json.loads(row["registry_integration_types"]),
                contexts=json.loads(row["registry_contexts"])
                if row["registry_contexts"]
                else None,
                handler=row["registry_handler"],
            ),
            deployment=DeploymentState(
                status=DeploymentStatus(row["deployment_status"]),
                last_deployed=_from_iso(row["last_deployed"]),
                last_synced=_from_iso(row["last_synced"]),
                last_error=row["last_error"],
                deploy_count=row["deploy_count"],
            ),
            stats=UsageStats(
                total_uses=row["total_uses"],
                uses_today=row["uses_today"],
                last_used=_from_iso(row["last_used"]),
                guild_usage=json.loads(row["guild_usage"]),
            ),
            deleted_at=_from_iso(row["deleted_at"]),
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )

    def _command_values(self, cmd: Command) -> tuple[Any, ...]:
        return (
            cmd.name,
            cmd.guild_id,
            cmd.description,
            json.dumps(cmd.options),
            str(cmd.category),
            int(cmd.enabled),
            cmd.default_member_permissions,
            int(cmd.dm_permission),
            cmd.version,
            cmd.created_by,
            cmd.updated_by,
            cmd.registry.id,
            cmd.registry.application_id,
            cmd.registry.version,
            cmd.registry.type,
            int(cmd.registry.nsfw),
            json.dumps(cmd.registry.integration_types),
            json.dumps(cmd.registry.contexts)
            if cmd.registry.contexts is not None
            else None,
            cmd.registry.handler,
            str(cmd.deployment.status),
            _iso(cmd.deployment.last_deployed),
            _iso(cmd.deployment.last_synced),
            cmd.deployment.last_error,
            cmd.deployment.deploy_count,
            cmd.stats.total_uses,
            cmd.stats.uses_today,
            _iso(cmd.stats.last_used),
            json.dumps(cmd.stats.guild_usage),
            _iso(cmd.deleted_at),
            _iso(cmd.created_at),
            _iso(cmd.updated_at),
        )

    async def create(self, cmd: Command) -> Command:
        """Insert a new command.

        Args:
            cmd: Command to create. The id field is ignored and assigned by
                the database; the name is normalized to lowercase.

        Returns:
            The stored Command with its ID and timestamps.

        Raises:
            Conflict: If a live command with the same (name, guild_id) exists.
        """
        now = utcnow()
        cmd.name = normalize_name(cmd.name)
        cmd.created_at = cmd.created_at or now
        cmd.updated_at = now

        placeholders = ", ".join("?" for _ in _COLUMNS)
        async with self._connect() as conn:
            try:
                cursor = await conn.execute(
                    f"INSERT INTO commands ({', '.join(_COLUMNS)}) "
                    f"VALUES ({placeholders})",
                    self._command_values(cmd),
                )
                await conn.commit()
            except sqlite3.IntegrityError as e:
                raise Conflict(
                    f"Command already exists in this scope: {cmd.name}"
                ) from e
            cmd.id = cursor.lastrowid
        return cmd

    async def save(self, cmd: Command) -> Command:
        """Persist every field of an existing command.

        Args:
            cmd: Command with a valid id.

        Returns:
            The Command with a refreshed updated_at.

        Raises:
            NotFound: If no row has the command's id.
            Conflict: If un-deleting would duplicate a live (name, scope).
        """
        cmd.updated_at = utcnow()
        assignments = ", ".join(f"{column} = ?" for column in _COLUMNS)
        async with self._connect() as conn:
            try:
                cursor = await conn.execute(
                    f"UPDATE commands SET {assignments} WHERE id = ?",
                    (*self._command_values(cmd), cmd.id),
                )
                await conn.commit()
            except sqlite3.IntegrityError as e:
                raise Conflict(
                    f"Command already exists in this scope: {cmd.name}"
                ) from e
            if cursor.rowcount == 0:
                raise NotFound(f"No command found with id: {cmd.id}")
        return cmd

    async def get(self, name: str, guild_id: str | None = None) -> Command | None:
        """Retrieve a live command by (name, scope).

        Args:
            name: Command name (case-insensitive).
            guild_id: Guild scope, None for global.

        Returns:
            Command if found, None otherwise.
        """
        async with self._connect() as conn:
            cursor = await conn.execute(
                "SELECT * FROM commands "
                "WHERE name = ? AND guild_id IS ? AND deleted_at IS NULL",
                (normalize_name(name), guild_id),
            )
            row = await cursor.fetchone()
        return self._row_to_command(row) if row else None

    async def get_deleted(
        self, name: str, guild_id: str | None = None
    ) -> Command | None:
        """Retrieve the most recently soft-deleted command for (name, scope)."""
        async with self._connect() as conn:
            cursor = await conn.execute(
                "SELECT * FROM commands "
                "WHERE name = ? AND guild_id IS ? AND deleted_at IS NOT NULL "
                "ORDER BY deleted_at DESC LIMIT 1",
                (normalize_name(name), guild_id),
            )
            row = await cursor.fetchone()
        return self._row_to_command(row) if row else None

    async def find(self, filters: CommandFilters | None = None) -> list[Command]:
        """List commands matching the filters, ordered by name.

        Soft-deleted commands are excluded unless filters.deleted is set,
        in which case only soft-deleted commands are returned.
        """
        filters = filters or CommandFilters()
        clauses = [
            "deleted_at IS NOT NULL" if filters.deleted else "deleted_at IS NULL"
        ]
        params: list[Any] = []
        if filters.category is not None:
            clauses.append("category = ?")
            params.append(str(filters.category))
        if filters.enabled is not None:
            clauses.append("enabled = ?")
            params.append(int(filters.enabled))
        if filters.scoped:
            clauses.append("guild_id IS ?")
            params.append(filters.guild_id)
        if filters.status is not None:
            clauses.append("deployment_status = ?")
            params.append(str(filters.status))

        query = f"SELECT * FROM commands WHERE {' AND '.join(clauses)} ORDER BY name"
        async with self._connect() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        return [self._row_to_command(row) for row in rows]

    async def mark_failed(
        self, guild_id: str | None, error: str, names: list[str] | None = None
    ) -> int:
        """Mark live, enabled, not-deployed commands of a scope as failed.

        Args:
            guild_id: Scope of the failed deploy.
            error: Error message to record.
            names: Restrict to these names; None means the whole scope.

        Returns:
            Number of commands marked.
        """
        query = (
            "UPDATE commands SET deployment_status = ?, last_error = ?, "
            "updated_at = ? "
            "WHERE guild_id IS ? AND enabled = 1 AND deleted_at IS NULL "
            "AND deployment_status != ?"
        )
        params: list[Any] = [
            str(DeploymentStatus.FAILED),
            error,
            utcnow().isoformat(),
            guild_id,
            str(DeploymentStatus.DEPLOYED),
        ]
        if names is not None:
            if not names:
                return 0
            query += f" AND name IN ({', '.join('?' for _ in names)})"
            params.extend(names)

        async with self._connect() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def record_usage(
        self, name: str, guild_id: str | None, used_in_guild: str | None
    ) -> bool:
        """Increment usage counters of a live command in one statement.

        Args:
            name: Command name.
            guild_id: Scope of the command.
            used_in_guild: Guild the command was invoked in, if any.

        Returns:
            True if a command was updated.
        """
        now = utcnow().isoformat()
        guild_usage_expr = "guild_usage"
        params: list[Any] = [now]
        if used_in_guild:
            guild_usage_expr = (
                "json_set(guild_usage, '$.\"' || ? || '\"', "
                "COALESCE(json_extract(guild_usage, '$.\"' || ? || '\"'), 0) + 1)"
            )
            params.extend([used_in_guild, used_in_guild])
        params.extend([normalize_name(name), guild_id])

        async with self._connect() as conn:
            cursor = await conn.execute(
                "UPDATE commands SET total_uses = total_uses + 1, "
                "uses_today = uses_today + 1, last_used = ?, "
                f"guild_usage = {guild_usage_expr} "
                "WHERE name = ? AND guild_id IS ? AND deleted_at IS NULL",
                params,
            )
            await conn.commit()
            return cursor.rowcount > 0

    async def count_summary(self) -> dict[str, Any]:
        """Aggregate counts used by the statistics endpoint."""
        async with self._connect() as conn:
            cursor = await conn.execute(
                "SELECT "
                "SUM(CASE WHEN deleted_at IS NULL THEN 1 ELSE 0 END) AS total, "
                "SUM(CASE WHEN deleted_at IS NULL AND enabled = 1 THEN 1 ELSE 0 END) "
                "AS enabled, "
                "SUM(CASE WHEN deleted_at IS NOT NULL THEN 1 ELSE 0 END) AS deleted "
                "FROM commands"
            )
            totals = await cursor.fetchone()
            cursor = await conn.execute(
                "SELECT deployment_status, COUNT(*) AS count FROM commands "
                "WHERE deleted_at IS NULL GROUP BY deployment_status"
            )
            by_status = {row["deployment_status"]: row["count"] for row in await cursor.fetchall()}

        total = totals["total"] or 0
        enabled = totals["enabled"] or 0
        return {
            "total": total,
            "enabled": enabled,
            "disabled": total - enabled,
            "deleted": totals["deleted"] or 0,
            "deployment": {
                status.value: by_status.get(status.value, 0)
                for status in DeploymentStatus
            },
        }

    async def top_commands(self, limit: int = 10) -> list[Command]:
        """Most used live, enabled commands."""
        async with self._connect() as conn:
            cursor = await conn.execute(
                "SELECT * FROM commands WHERE deleted_at IS NULL AND enabled = 1 "
                "ORDER BY total_uses DESC, name LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_command(row) for row in rows]

