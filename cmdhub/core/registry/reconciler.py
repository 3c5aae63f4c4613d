# cmdhub/core/registry/reconciler.py
"""Reconciliation between the command store and Discord.

The local store is the source of truth. Deploy pushes the desired state of
one scope (live, enabled commands) to Discord with a single bulk overwrite
and writes the remote identifiers back. Sync pulls what Discord reports and
copies its metadata onto matching local commands; remote entries without a
local counterpart are reported as orphans and never deleted implicitly.

Both operations are rate limited per application ID and invalidate the
command cache when they succeed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from cmdhub.core.commands.models import (
    Command,
    CommandFilters,
    DeploymentStatus,
    normalize_name,
)
from cmdhub.core.commands.repository import utcnow
from cmdhub.core.commands.service import CommandService
from cmdhub.core.errors import CmdhubError, NotFound, TransportFailure
from cmdhub.core.registry.client import DiscordRegistryClient

logger = logging.getLogger(__name__)

SYNC_ACTION = "sync"
DEPLOY_ACTION = "deploy"


@dataclass
class Orphan:
    """A command registered on Discord with no live local record."""

    name: str
    id: str | None
    description: str
    guild_id: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "id": self.id,
            "description": self.description,
            "guild_id": self.guild_id,
        }


@dataclass
class SyncResult:
    matched: list[str] = field(default_factory=list)
    orphans: list[Orphan] = field(default_factory=list)


@dataclass
class DeployResult:
    """Outcome of a deploy.

    Attributes:
        deployed: Names registered by the bulk overwrite.
        removed: Names deleted from Discord because they were not desired.
        disabled_cleared: Disabled commands whose remote ID was cleared.
    """

    deployed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    disabled_cleared: list[str] = field(default_factory=list)


@dataclass
class RestoreOutcome:
    """Outcome of a restore.

    Attributes:
        command: The restored command, re-read after any redeploy.
        redeploy_triggered: Whether the command lacked a remote ID and a
            scoped deploy was attempted.
        deployed_to_discord: Whether that deploy succeeded.
        error: Deploy error message when it did not.
    """

    command: Command
    redeploy_triggered: bool
    deployed_to_discord: bool = False
    error: str | None = None


def _scope_label(guild_id: str | None) -> str:
    return guild_id or "global"


class Reconciler:
    """Keeps Discord's registered commands converged with the store."""

    def __init__(self, service: CommandService, registry: DiscordRegistryClient) -> None:
        self.service = service
        self.registry = registry

    @property
    def application_id(self) -> str:
        return self.registry.application_id

    async def list_remote(self, guild_id: str | None = None) -> list[dict[str, Any]]:
        """Live view of what Discord reports for a scope."""
        return await self.registry.list_commands(guild_id)

    async def sync_from_discord(self, guild_id: str | None = None) -> SyncResult:
        """Pull the remote command list and update matching local commands.

        Args:
            guild_id: Scope to sync, None for global commands.

        Returns:
            SyncResult with matched names and orphans.

        Raises:
            RateLimited: If the sync quota for the application is exhausted.
            TransportFailure: If Discord cannot be reached.
        """
        limiter = self.service.limiter
        await limiter.enforce(SYNC_ACTION, self.application_id)

        logger.info("Syncing commands from Discord (scope=%s)", _scope_label(guild_id))
        remote_commands = await self.registry.list_commands(guild_id)
        await limiter.increment(SYNC_ACTION, self.application_id)

        result = SyncResult()
        now = utcnow()
        for remote in remote_commands:
            command = await self.service.repository.get(remote["name"], guild_id)
            if command is None:
                result.orphans.append(
                    Orphan(
                        name=remote["name"],
                        id=remote.get("id"),
                        description=remote.get("description", ""),
                        guild_id=guild_id,
                    )
                )
                continue

            command.apply_registry_data(remote)
            command.deployment.status = DeploymentStatus.SYNCED
            command.deployment.last_synced = now
            await self.service.repository.save(command)
            result.matched.append(command.name)

        await self.service.cache.invalidate_all()

        if result.orphans:
            logger.warning(
                "Orphan commands on Discord (scope=%s): %s",
                _scope_label(guild_id),
                ", ".join(o.name for o in result.orphans),
            )
        logger.info(
            "Sync complete: %d matched, %d orphans",
            len(result.matched),
            len(result.orphans),
            extra={"scope": _scope_label(guild_id), "action": SYNC_ACTION},
        )
        return result

    async def deploy_to_discord(self, guild_id: str | None = None) -> DeployResult:
        """Push the desired state of a scope to Discord.

        Steps: load desired commands, fetch the observed remote set, delete
        remote entries that are not desired, clear disabled commands, bulk
        overwrite the scope, write remote identifiers back.

        Args:
            guild_id: Scope to deploy, None for global commands.

        Returns:
            DeployResult describing what changed.

        Raises:
            RateLimited: If the deploy quota for the application is exhausted.
            TransportFailure: If the bulk overwrite fails. Affected commands
                are marked failed before the error propagates.
        """
        limiter = self.service.limiter
        repository = self.service.repository
        await limiter.enforce(DEPLOY_ACTION, self.application_id)

        scope = _scope_label(guild_id)
        logger.info("Deploying commands to Discord (scope=%s)", scope)

        desired = await repository.find(
            CommandFilters(enabled=True, guild_id=guild_id, scoped=True)
        )
        desired_by_name = {command.name: command for command in desired}
        result = DeployResult()
        replaced = False

        try:
            observed = await self._fetch_observed(guild_id)

            removed_ids: set[str] = set()
            for remote in observed:
                if remote["name"] in desired_by_name:
                    continue
                if await self._delete_remote(remote.get("id"), remote["name"], guild_id):
                    result.removed.append(remote["name"])
                    removed_ids.add(remote["id"])
            await self._forget_removed(removed_ids, guild_id)

            disabled = await repository.find(
                CommandFilters(enabled=False, guild_id=guild_id, scoped=True)
            )
            observed_ids = {remote.get("id") for remote in observed}
            for command in disabled:
                if command.registry.id is None:
                    continue
                already_removed = command.name in result.removed or (
                    observed and command.registry.id not in observed_ids
                )
                if not already_removed:
                    await self._delete_remote(command.registry.id, command.name, guild_id)
                command.clear_registry_id()
                await repository.save(command)
                result.disabled_cleared.append(command.name)

            payloads = [command.to_registry_payload() for command in desired]
            registered = await self.registry.replace_commands(payloads, guild_id)
            replaced = True

            await self._write_back(registered, desired_by_name)
            result.deployed = [entry["name"] for entry in registered]
        except Exception as e:
            await self._record_failure(guild_id, desired_by_name, e, replaced)
            raise

        await self.service.cache.invalidate_all()
        await limiter.increment(DEPLOY_ACTION, self.application_id)

        logger.info(
            "Deploy complete (scope=%s): %d deployed, %d removed, %d disabled cleared",
            scope,
            len(result.deployed),
            len(result.removed),
            len(result.disabled_cleared),
            extra={"scope": scope, "action": DEPLOY_ACTION},
        )
        return result

    async def _fetch_observed(self, guild_id: str | None) -> list[dict[str, Any]]:
        try:
            return await self.registry.list_commands(guild_id)
        except TransportFailure as e:
            logger.warning(
                "Could not fetch remote commands (scope=%s), assuming none: %s",
                _scope_label(guild_id),
                e,
            )
            return []

    async def _delete_remote(
        self, command_id: str | None, name: str, guild_id: str | None
    ) -> bool:
        """Best-effort single delete; failures are logged and swallowed."""
        if not command_id:
            return False
        try:
            await self.registry.delete_command(command_id, guild_id)
        except TransportFailure as e:
            logger.error("Failed to remove %s from Discord: %s", name, e)
            return False
        logger.info("Removed %s from Discord (scope=%s)", name, _scope_label(guild_id))
        return True

    async def _forget_removed(self, removed_ids: set[str], guild_id: str | None) -> None:
        """Clear remote IDs that soft-deleted commands still hold for removed entries."""
        if not removed_ids:
            return
        repository = self.service.repository
        deleted = await repository.find(
            CommandFilters(deleted=True, guild_id=guild_id, scoped=True)
        )
        for command in deleted:
            if command.registry.id in removed_ids:
                command.clear_registry_id()
                await repository.save(command)
                logger.info("Cleared remote ID of deleted command %s", command.name)

    async def _write_back(
        self,
        registered: list[dict[str, Any]],
        desired_by_name: dict[str, Command],
        confirming: bool = False,
    ) -> list[str]:
        """Persist remote IDs of registered commands and mark them deployed.

        When confirming after a failed write-back, commands already stored
        as deployed with the entry's ID and version are not counted again.
        """
        now = utcnow()
        written: list[str] = []
        for entry in registered:
            command = desired_by_name.get(entry["name"])
            if command is None:
                continue
            if (
                confirming
                and command.deployment.status is DeploymentStatus.DEPLOYED
                and command.registry.id == entry.get("id")
                and command.registry.version == entry.get("version")
            ):
                written.append(command.name)
                continue
            command.apply_registry_data(entry)
            command.deployment.status = DeploymentStatus.DEPLOYED
            command.deployment.last_deployed = now
            command.deployment.last_error = None
            command.deployment.deploy_count += 1
            await self.service.repository.save(command)
            written.append(command.name)
        return written

    async def _record_failure(
        self,
        guild_id: str | None,
        desired_by_name: dict[str, Command],
        error: Exception,
        replaced: bool,
    ) -> None:
        """Mark desired commands failed after a deploy error.

        When the bulk overwrite already went through, the remote state is
        fetched again and every command Discord confirms is written back as
        deployed; only the unconfirmed ones are marked failed.
        """
        message = str(error)
        repository = self.service.repository
        limiter = self.service.limiter
        logger.error("Deploy failed (scope=%s): %s", _scope_label(guild_id), message)

        try:
            if replaced:
                await limiter.increment(DEPLOY_ACTION, self.application_id)
                try:
                    confirmed = await self.registry.list_commands(guild_id)
                except TransportFailure as e:
                    logger.error("Could not confirm remote state after deploy: %s", e)
                    await repository.mark_failed(guild_id, message)
                else:
                    # In-memory records may hold a partial write-back; start from the store
                    stored = await repository.find(
                        CommandFilters(enabled=True, guild_id=guild_id, scoped=True)
                    )
                    written = await self._write_back(
                        confirmed,
                        {command.name: command for command in stored},
                        confirming=True,
                    )
                    unconfirmed = [name for name in desired_by_name if name not in written]
                    await repository.mark_failed(guild_id, message, names=unconfirmed)
                    logger.warning(
                        "Deploy partially confirmed: %d deployed, %d failed",
                        len(written),
                        len(unconfirmed),
                    )
            else:
                await repository.mark_failed(guild_id, message)
        except Exception:
            logger.exception("Could not record deploy failure")
        finally:
            await self.service.cache.invalidate_all()

    async def remove_orphan_from_discord(
        self, name: str, guild_id: str | None = None
    ) -> dict[str, Any]:
        """Delete a remote-only command by name.

        Raises:
            NotFound: If Discord has no command with that name in the scope.
            TransportFailure: If Discord cannot be reached.
        """
        remote_commands = await self.registry.list_commands(guild_id)
        wanted = normalize_name(name)
        target = next((c for c in remote_commands if c["name"] == wanted), None)
        if target is None:
            raise NotFound(f"Command not found on Discord: {name}")

        await self.registry.delete_command(target["id"], guild_id)
        await self.service.cache.invalidate_all()

        logger.info("Orphan removed from Discord: %s (scope=%s)", name, _scope_label(guild_id))
        return {"deleted": target["name"], "id": target["id"]}

    async def delete_from_discord(
        self, name: str, guild_id: str | None = None
    ) -> Command:
        """Remove a tracked command's remote registration.

        Raises:
            NotFound: If the command is unknown or has no remote ID.
            TransportFailure: If Discord cannot be reached.
        """
        repository = self.service.repository
        command = await repository.get(name, guild_id)
        if command is None:
            command = await repository.get_deleted(name, guild_id)
        if command is None or command.registry.id is None:
            raise NotFound(f"Command not found on Discord: {name}")

        await self.registry.delete_command(command.registry.id, guild_id)
        command.clear_registry_id()
        await repository.save(command)
        await self.service.cache.invalidate_all()

        logger.info("Command removed from Discord: %s", command.name)
        return command

    async def restore_command(
        self, name: str, guild_id: str | None = None
    ) -> RestoreOutcome:
        """Restore a soft-deleted command, redeploying its scope if needed.

        A failed redeploy is reported, not rolled back: the restore stands
        and the next deploy retries.
        """
        restored = await self.service.restore(name, guild_id)
        if not restored.needs_deploy:
            return RestoreOutcome(command=restored.command, redeploy_triggered=False)

        error: str | None = None
        try:
            await self.deploy_to_discord(guild_id)
        except CmdhubError as e:
            logger.warning("Restored %s but redeploy failed: %s", restored.command.name, e)
            error = e.message

        command = await self.service.repository.get(name, guild_id) or restored.command
        return RestoreOutcome(
            command=command,
            redeploy_triggered=True,
            deployed_to_discord=error is None,
            error=error,
        )
