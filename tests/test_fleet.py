"""Tests for the Fleet composition root."""

from unittest.mock import AsyncMock, patch

import pytest

from docker_fleet.core.config_loader import FleetConfig
from docker_fleet.core.exceptions import ConfigurationError
from docker_fleet.core.transfer import SFTPTransfer
from docker_fleet.fleet import Fleet
from docker_fleet.models import CommandResult, ConnectionTestResult


@pytest.fixture
def fleet_config(source_server, target_server, backup_settings):
    return FleetConfig(
        servers={"source": source_server, "target": target_server},
        backup=backup_settings,
    )


class TestFleet:
    """Test service wiring and delegation."""

    def test_services_share_one_pool(self, fleet_config):
        fleet = Fleet(fleet_config)

        assert fleet.executor.pool is fleet.pool
        assert isinstance(fleet.transfer, SFTPTransfer)
        assert fleet.transfer.pool is fleet.pool
        assert fleet.migrations.executor is fleet.executor
        assert fleet.snapshot_service.executor is fleet.executor
        assert fleet.snapshot_service.snapshots is fleet.snapshots
        assert fleet.pool.channel_ceiling == fleet_config.pool.channel_ceiling

    async def test_context_manager_starts_and_stops(self, fleet_config, backup_settings, tmp_path):
        async with Fleet(fleet_config) as fleet:
            assert fleet.pool._reaper_task is not None
            assert (tmp_path / "backups").is_dir()

        assert fleet.pool._reaper_task is None

    async def test_exec_resolves_server(self, fleet_config, source_server):
        fleet = Fleet(fleet_config)
        expected = CommandResult(stdout="ok", exit_code=0)

        with patch.object(fleet.executor, "exec", AsyncMock(return_value=expected)) as exec_mock:
            result = await fleet.exec("source", "docker ps")

        assert result is expected
        exec_mock.assert_awaited_once_with(source_server, "docker ps")

    async def test_test_connection_uses_server_fields(self, fleet_config):
        fleet = Fleet(fleet_config)
        probe = AsyncMock(return_value=ConnectionTestResult(status="online"))

        with patch.object(fleet.executor, "test_connection", probe):
            result = await fleet.test_connection("target")

        assert result.online
        probe.assert_awaited_once_with(
            "10.0.0.2", "deploy", "/keys/id_ed25519", port=22, timeout=fleet_config.pool.connect_timeout
        )

    async def test_forget_server(self, fleet_config):
        fleet = Fleet(fleet_config)

        with patch.object(fleet.pool, "force_close", AsyncMock(return_value=True)) as force_close:
            assert await fleet.forget_server("source") is True

        force_close.assert_awaited_once_with("10.0.0.1", "deploy")

    async def test_unknown_server(self, fleet_config):
        fleet = Fleet(fleet_config)

        with pytest.raises(ConfigurationError):
            await fleet.exec("missing", "uptime")
