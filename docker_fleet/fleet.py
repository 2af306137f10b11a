"""Composition root wiring the pool, executor, transfer and orchestrators."""

import structlog

from .core.config_loader import FleetConfig, Server
from .core.executor import CommandExecutor
from .core.shell import ShellSession, create_shell
from .core.ssh_pool import SSHConnectionPool
from .core.transfer import BaseTransfer, SFTPTransfer
from .models.results import CommandResult, ConnectionTestResult
from .services.migration import MigrationOrchestrator
from .services.snapshot import SnapshotOrchestrator
from .services.store import (
    DeploymentStore,
    InMemoryDeploymentStore,
    InMemorySnapshotStore,
    SnapshotStore,
)

logger = structlog.get_logger()


class Fleet:
    """One process-wide set of fleet services sharing a single connection pool.

    Usage:
        async with Fleet(config) as fleet:
            result = await fleet.exec("prod-1", "docker ps")
    """

    def __init__(
        self,
        config: FleetConfig,
        deployments: DeploymentStore | None = None,
        snapshots: SnapshotStore | None = None,
        transfer: BaseTransfer | None = None,
    ):
        self.config = config
        self.pool = SSHConnectionPool.from_settings(config.pool)
        self.executor = CommandExecutor(self.pool, command_timeout=config.pool.command_timeout)
        self.transfer = transfer or SFTPTransfer(self.pool)
        self.deployments = deployments or InMemoryDeploymentStore()
        self.snapshots = snapshots or InMemorySnapshotStore()

        self.migrations = MigrationOrchestrator(
            self.executor, self.transfer, self.deployments, config.backup
        )
        self.snapshot_service = SnapshotOrchestrator(
            self.executor, self.transfer, self.deployments, self.snapshots, config.backup
        )
        self.logger = logger.bind(component="fleet")

    async def start(self) -> None:
        """Prepare backup directories and start the idle-connection reaper."""
        self.snapshot_service.ensure_backup_dirs()
        await self.pool.start_reaper()
        self.logger.info("Fleet started", servers=len(self.config.servers))

    async def close(self) -> None:
        await self.pool.close_all()
        self.logger.info("Fleet stopped")

    async def __aenter__(self) -> "Fleet":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def server(self, server_id: str) -> Server:
        return self.config.get_server(server_id)

    async def exec(self, server_id: str, command: str) -> CommandResult:
        return await self.executor.exec(self.server(server_id), command)

    async def test_connection(self, server_id: str) -> ConnectionTestResult:
        server = self.server(server_id)
        return await self.executor.test_connection(
            server.host,
            server.username,
            server.private_key_path,
            port=server.port,
            timeout=self.config.pool.connect_timeout,
        )

    async def open_shell(self, server_id: str, cols: int = 80, rows: int = 24) -> ShellSession:
        """Open an interactive shell outside the pool. The caller must close it."""
        return await create_shell(
            self.server(server_id),
            cols=cols,
            rows=rows,
            connect_timeout=self.config.pool.connect_timeout,
        )

    async def forget_server(self, server_id: str) -> bool:
        """Drop a server's pooled connection regardless of active references."""
        server = self.server(server_id)
        return await self.pool.force_close(server.host, server.username)
