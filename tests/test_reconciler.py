"""Tests for sync, deploy and remote deletes against an in-memory registry."""

from unittest.mock import AsyncMock

import pytest

from cmdhub.core.commands.models import DeploymentStatus
from cmdhub.core.commands.service import CommandService
from cmdhub.core.errors import NotFound, RateLimited, TransportFailure
from cmdhub.core.registry.reconciler import DEPLOY_ACTION, SYNC_ACTION, Reconciler
from conftest import APPLICATION_ID, FakeRegistry


async def _create(service: CommandService, name: str, guild_id: str | None = None, **extra):
    data = {"name": name, "description": f"{name} command", "guild_id": guild_id, **extra}
    return await service.create(data)


class TestDeploy:
    """Tests for deploy_to_discord()."""

    @pytest.mark.asyncio
    async def test_deploy_then_disable(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test create, deploy, disable, deploy for a global command."""
        await _create(service, "ping")

        result = await reconciler.deploy_to_discord()

        assert result.deployed == ["ping"]
        assert fake_registry.names() == ["ping"]
        ping = await service.require("ping")
        assert ping.deployment.status is DeploymentStatus.DEPLOYED
        assert ping.registry.id == fake_registry.scopes[None][0]["id"]
        assert ping.registry.application_id == APPLICATION_ID
        assert ping.deployment.deploy_count == 1
        assert ping.deployment.last_deployed is not None

        await service.toggle("ping", enabled=False)
        result = await reconciler.deploy_to_discord()

        assert fake_registry.names() == []
        assert result.deployed == []
        ping = await service.require("ping")
        assert ping.registry.id is None
        assert ping.deployment.status is DeploymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_deploy_converges_desired_state(
        self, service: CommandService, reconciler: Reconciler
    ):
        """Test that enabled commands get IDs and disabled ones none."""
        await _create(service, "a")
        await _create(service, "b")
        await _create(service, "c", enabled=False)

        await reconciler.deploy_to_discord()

        for name in ("a", "b"):
            cmd = await service.require(name)
            assert cmd.registry.id is not None
            assert cmd.deployment.status is DeploymentStatus.DEPLOYED
        assert (await service.require("c")).registry.id is None

    @pytest.mark.asyncio
    async def test_deploy_is_idempotent(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        await _create(service, "a")
        await _create(service, "b")

        await reconciler.deploy_to_discord()
        first = {c["name"]: c["id"] for c in fake_registry.scopes[None]}
        await reconciler.deploy_to_discord()
        second = {c["name"]: c["id"] for c in fake_registry.scopes[None]}

        assert first == second
        assert (await service.require("a")).deployment.deploy_count == 2

    @pytest.mark.asyncio
    async def test_deploy_removes_undesired_remote(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test that remote entries without a desired command are deleted."""
        fake_registry.seed(["stale"])
        await _create(service, "ping")

        result = await reconciler.deploy_to_discord()

        assert result.removed == ["stale"]
        assert fake_registry.names() == ["ping"]

    @pytest.mark.asyncio
    async def test_deploy_is_scoped(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test that a guild deploy leaves the global scope untouched."""
        await _create(service, "global-cmd")
        await _create(service, "guild-cmd", guild_id="555")

        result = await reconciler.deploy_to_discord("555")

        assert result.deployed == ["guild-cmd"]
        assert fake_registry.names("555") == ["guild-cmd"]
        assert fake_registry.names(None) == []
        assert (await service.require("global-cmd")).deployment.status is DeploymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_deploy_survives_observed_fetch_failure(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test that a failed remote listing is treated as an empty scope."""
        await _create(service, "ping")
        fake_registry.fail_list = True

        result = await reconciler.deploy_to_discord()

        assert result.deployed == ["ping"]
        assert (await service.require("ping")).deployment.status is DeploymentStatus.DEPLOYED

    @pytest.mark.asyncio
    async def test_deploy_failure_marks_commands_failed(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test that a failed bulk overwrite is recorded and re-raised."""
        await _create(service, "ping")
        await _create(service, "off", enabled=False)
        fake_registry.fail_replace = True

        with pytest.raises(TransportFailure):
            await reconciler.deploy_to_discord()

        ping = await service.require("ping")
        assert ping.deployment.status is DeploymentStatus.FAILED
        assert "HTTP 500" in ping.deployment.last_error
        assert (await service.require("off")).deployment.status is DeploymentStatus.PENDING
        # The overwrite never went through, so no quota was spent
        assert (await service.limiter.check(DEPLOY_ACTION, APPLICATION_ID)).remaining == 5

    @pytest.mark.asyncio
    async def test_failed_command_redeploys(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        await _create(service, "ping")
        fake_registry.fail_replace = True
        with pytest.raises(TransportFailure):
            await reconciler.deploy_to_discord()

        fake_registry.fail_replace = False
        await reconciler.deploy_to_discord()

        ping = await service.require("ping")
        assert ping.deployment.status is DeploymentStatus.DEPLOYED
        assert ping.deployment.last_error is None

    @pytest.mark.asyncio
    async def test_write_back_failure_confirms_remote_state(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test that commands Discord confirms after a replace are kept deployed."""
        await _create(service, "a")
        await _create(service, "b")
        reconciler._write_back = AsyncMock(side_effect=[RuntimeError("disk full"), ["a", "b"]])

        with pytest.raises(RuntimeError, match="disk full"):
            await reconciler.deploy_to_discord()

        assert reconciler._write_back.await_count == 2
        assert fake_registry.names() == ["a", "b"]
        # The replace was issued, so the attempt counts against the quota
        assert (await service.limiter.check(DEPLOY_ACTION, APPLICATION_ID)).remaining == 4

    @pytest.mark.asyncio
    async def test_write_back_failure_marks_unconfirmed_failed(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        await _create(service, "a")
        await _create(service, "b")
        original_write_back = reconciler._write_back
        calls = 0

        async def flaky_write_back(registered, desired_by_name, confirming=False):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("disk full")
            # Discord only confirms "a"
            return await original_write_back(
                [e for e in registered if e["name"] == "a"], desired_by_name, confirming
            )

        reconciler._write_back = flaky_write_back

        with pytest.raises(RuntimeError):
            await reconciler.deploy_to_discord()

        assert (await service.require("a")).deployment.status is DeploymentStatus.DEPLOYED
        b = await service.require("b")
        assert b.deployment.status is DeploymentStatus.FAILED
        assert b.deployment.last_error == "disk full"

    @pytest.mark.asyncio
    async def test_partial_write_back_counts_one_deploy(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test that confirming after a half-saved write-back counts each deploy once."""
        await _create(service, "a")
        await _create(service, "b")
        repository = service.repository
        original_save = repository.save
        saves = 0

        async def save_failing_once(command):
            nonlocal saves
            saves += 1
            if saves == 2:
                raise RuntimeError("database is locked")
            return await original_save(command)

        repository.save = save_failing_once

        with pytest.raises(RuntimeError, match="database is locked"):
            await reconciler.deploy_to_discord()

        assert len([c for c in fake_registry.calls if c[0] == "replace"]) == 1
        for name in ("a", "b"):
            cmd = await service.require(name)
            assert cmd.deployment.status is DeploymentStatus.DEPLOYED
            assert cmd.deployment.deploy_count == 1
            assert cmd.registry.id is not None

    @pytest.mark.asyncio
    async def test_deploy_rate_limited(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test that the sixth deploy in a window is refused before any call."""
        await _create(service, "ping")
        for _ in range(5):
            await reconciler.deploy_to_discord()
        calls_before = len(fake_registry.calls)

        with pytest.raises(RateLimited):
            await reconciler.deploy_to_discord()

        assert len(fake_registry.calls) == calls_before

    @pytest.mark.asyncio
    async def test_deploy_updates_outdated_command(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        await _create(service, "ping")
        await reconciler.deploy_to_discord()
        await service.update("ping", {"description": "Measure latency"})

        await reconciler.deploy_to_discord()

        assert fake_registry.scopes[None][0]["description"] == "Measure latency"
        assert (await service.require("ping")).deployment.status is DeploymentStatus.DEPLOYED


class TestSync:
    """Tests for sync_from_discord()."""

    @pytest.mark.asyncio
    async def test_sync_reports_orphans_without_deleting(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test remote {a,b,c} against local {a,b}."""
        fake_registry.seed(["a", "b", "c"])
        await _create(service, "a")
        await _create(service, "b")

        result = await reconciler.sync_from_discord()

        assert result.matched == ["a", "b"]
        assert [o.name for o in result.orphans] == ["c"]
        assert result.orphans[0].id is not None
        assert fake_registry.names() == ["a", "b", "c"]
        assert not any(call[0] == "delete" for call in fake_registry.calls)

    @pytest.mark.asyncio
    async def test_sync_copies_remote_metadata(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        remote = fake_registry.seed(["ping"])[0]
        await _create(service, "ping")

        await reconciler.sync_from_discord()

        ping = await service.require("ping")
        assert ping.registry.id == remote["id"]
        assert ping.registry.version == remote["version"]
        assert ping.deployment.status is DeploymentStatus.SYNCED
        assert ping.deployment.last_synced is not None

    @pytest.mark.asyncio
    async def test_sync_counts_against_quota(
        self, service: CommandService, reconciler: Reconciler
    ):
        await reconciler.sync_from_discord()

        decision = await service.limiter.check(SYNC_ACTION, APPLICATION_ID)
        assert decision.remaining == 4

    @pytest.mark.asyncio
    async def test_sync_transport_failure_propagates(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        fake_registry.fail_list = True
        with pytest.raises(TransportFailure):
            await reconciler.sync_from_discord()
        assert (await service.limiter.check(SYNC_ACTION, APPLICATION_ID)).remaining == 5

    @pytest.mark.asyncio
    async def test_synced_then_updated_is_outdated(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        fake_registry.seed(["ping"])
        await _create(service, "ping")
        await reconciler.sync_from_discord()

        cmd = await service.update("ping", {"description": "Changed"})

        assert cmd.deployment.status is DeploymentStatus.OUTDATED


class TestRemoteDeletes:
    """Tests for orphan removal and removing a tracked command remotely."""

    @pytest.mark.asyncio
    async def test_remove_orphan(self, reconciler: Reconciler, fake_registry: FakeRegistry):
        entry = fake_registry.seed(["legacy", "keep"])[0]

        result = await reconciler.remove_orphan_from_discord("legacy")

        assert result == {"deleted": "legacy", "id": entry["id"]}
        assert fake_registry.names() == ["keep"]

    @pytest.mark.asyncio
    async def test_remove_orphan_normalizes_name(
        self, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        fake_registry.seed(["legacy"])

        result = await reconciler.remove_orphan_from_discord("  Legacy ")

        assert result["deleted"] == "legacy"
        assert fake_registry.names() == []

    @pytest.mark.asyncio
    async def test_remove_missing_orphan(self, reconciler: Reconciler, fake_registry: FakeRegistry):
        fake_registry.seed(["keep"])
        with pytest.raises(NotFound):
            await reconciler.remove_orphan_from_discord("legacy")

    @pytest.mark.asyncio
    async def test_delete_from_discord(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        await _create(service, "ping")
        await reconciler.deploy_to_discord()

        cmd = await reconciler.delete_from_discord("ping")

        assert fake_registry.names() == []
        assert cmd.registry.id is None
        assert cmd.deployment.status is DeploymentStatus.PENDING
        assert (await service.get("ping")).registry.id is None

    @pytest.mark.asyncio
    async def test_delete_from_discord_after_soft_delete(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test that a soft-deleted command can still be removed remotely."""
        await _create(service, "ping")
        await reconciler.deploy_to_discord()
        await service.soft_delete("ping")
        assert fake_registry.names() == ["ping"]

        await reconciler.delete_from_discord("ping")

        assert fake_registry.names() == []

    @pytest.mark.asyncio
    async def test_delete_from_discord_unregistered(
        self, service: CommandService, reconciler: Reconciler
    ):
        await _create(service, "ping")
        with pytest.raises(NotFound):
            await reconciler.delete_from_discord("ping")


class TestRestore:
    """Tests for restore_command()."""

    @pytest.mark.asyncio
    async def test_restore_redeploys_unregistered_command(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        await _create(service, "ping")
        await service.soft_delete("ping")

        outcome = await reconciler.restore_command("ping")

        assert outcome.redeploy_triggered
        assert outcome.deployed_to_discord
        assert outcome.error is None
        assert outcome.command.deployment.status is DeploymentStatus.DEPLOYED
        assert fake_registry.names() == ["ping"]

    @pytest.mark.asyncio
    async def test_restore_after_deploy_removed_remote_entry(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test that a deleted command removed by a later deploy is re-created on restore."""
        await _create(service, "ping")
        await reconciler.deploy_to_discord()
        await service.soft_delete("ping")
        await reconciler.deploy_to_discord()
        assert fake_registry.names() == []
        deleted = await service.repository.get_deleted("ping")
        assert deleted.registry.id is None

        outcome = await reconciler.restore_command("ping")

        assert outcome.redeploy_triggered
        assert outcome.deployed_to_discord
        assert fake_registry.names() == ["ping"]
        assert outcome.command.registry.id == fake_registry.scopes[None][0]["id"]
        assert outcome.command.deployment.status is DeploymentStatus.DEPLOYED

    @pytest.mark.asyncio
    async def test_restore_of_registered_command_skips_deploy(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        await _create(service, "ping")
        await reconciler.deploy_to_discord()
        await service.soft_delete("ping")
        calls_before = len(fake_registry.calls)

        outcome = await reconciler.restore_command("ping")

        assert not outcome.redeploy_triggered
        assert len(fake_registry.calls) == calls_before

    @pytest.mark.asyncio
    async def test_restore_stands_when_redeploy_fails(
        self, service: CommandService, reconciler: Reconciler, fake_registry: FakeRegistry
    ):
        """Test partial success: restored locally, deploy error reported."""
        await _create(service, "ping")
        await service.soft_delete("ping")
        fake_registry.fail_replace = True

        outcome = await reconciler.restore_command("ping")

        assert outcome.redeploy_triggered
        assert not outcome.deployed_to_discord
        assert "HTTP 500" in outcome.error
        assert outcome.command.deleted_at is None
        assert outcome.command.deployment.status is DeploymentStatus.FAILED
        assert await service.get("ping") is not None

    @pytest.mark.asyncio
    async def test_restore_when_deploy_rate_limited(
        self, service: CommandService, reconciler: Reconciler
    ):
        await _create(service, "ping")
        await service.soft_delete("ping")
        for _ in range(5):
            await service.limiter.increment(DEPLOY_ACTION, APPLICATION_ID)

        outcome = await reconciler.restore_command("ping")

        assert not outcome.deployed_to_discord
        assert outcome.error.startswith("Rate limit reached")
        assert outcome.command.deleted_at is None
