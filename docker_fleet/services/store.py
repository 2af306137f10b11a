"""Persistence boundary for deployments and snapshots.

The orchestrators only talk to storage through these two protocols. The
in-memory implementations back embedded use and the test suite.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Protocol

import structlog

from ..models.deployment import App, Deployment, DeploymentStatus
from ..models.snapshot import Snapshot, SnapshotStatus

logger = structlog.get_logger()


class DeploymentStore(Protocol):
    """Deployment and app records used by the orchestrators."""

    async def get_app(self, app_id: str) -> App | None: ...

    async def get_deployment(self, deployment_id: str) -> Deployment | None: ...

    async def update_status(self, deployment_id: str, status: DeploymentStatus) -> None: ...

    async def create_deployment(self, deployment: Deployment) -> Deployment: ...

    async def remove_deployment(self, deployment_id: str) -> None: ...


class SnapshotStore(Protocol):
    """Snapshot records used by the snapshot orchestrator."""

    async def create(self, snapshot: Snapshot) -> Snapshot: ...

    async def get(self, snapshot_id: str) -> Snapshot | None: ...

    async def update_status(
        self, snapshot_id: str, status: SnapshotStatus, size_bytes: int | None = None
    ) -> None: ...

    async def total_storage_used(self) -> int: ...

    async def find_expired(self, retention_days: int) -> list[Snapshot]: ...

    async def remove(self, snapshot_id: str) -> None: ...


class InMemoryDeploymentStore:
    """Dict-backed ``DeploymentStore``."""

    def __init__(
        self,
        apps: list[App] | None = None,
        deployments: list[Deployment] | None = None,
    ):
        self.apps: dict[str, App] = {app.id: app for app in apps or []}
        self.deployments: dict[str, Deployment] = {d.id: d for d in deployments or []}
        self._lock = asyncio.Lock()

    async def get_app(self, app_id: str) -> App | None:
        return self.apps.get(app_id)

    async def get_deployment(self, deployment_id: str) -> Deployment | None:
        return self.deployments.get(deployment_id)

    async def update_status(self, deployment_id: str, status: DeploymentStatus) -> None:
        async with self._lock:
            deployment = self.deployments.get(deployment_id)
            if deployment is None:
                logger.warning("Status update for unknown deployment", deployment_id=deployment_id)
                return
            self.deployments[deployment_id] = deployment.model_copy(update={"status": status})

    async def create_deployment(self, deployment: Deployment) -> Deployment:
        async with self._lock:
            self.deployments[deployment.id] = deployment
        return deployment

    async def remove_deployment(self, deployment_id: str) -> None:
        async with self._lock:
            self.deployments.pop(deployment_id, None)


class InMemorySnapshotStore:
    """Dict-backed ``SnapshotStore``."""

    def __init__(self, snapshots: list[Snapshot] | None = None):
        self.snapshots: dict[str, Snapshot] = {s.id: s for s in snapshots or []}
        self._lock = asyncio.Lock()

    async def create(self, snapshot: Snapshot) -> Snapshot:
        async with self._lock:
            self.snapshots[snapshot.id] = snapshot
        return snapshot

    async def get(self, snapshot_id: str) -> Snapshot | None:
        return self.snapshots.get(snapshot_id)

    async def update_status(
        self, snapshot_id: str, status: SnapshotStatus, size_bytes: int | None = None
    ) -> None:
        async with self._lock:
            snapshot = self.snapshots.get(snapshot_id)
            if snapshot is None:
                logger.warning("Status update for unknown snapshot", snapshot_id=snapshot_id)
                return
            update: dict = {"status": status}
            if size_bytes is not None:
                update["size_bytes"] = size_bytes
            self.snapshots[snapshot_id] = snapshot.model_copy(update=update)

    async def total_storage_used(self) -> int:
        """Bytes held by complete snapshots."""
        return sum(
            s.size_bytes for s in self.snapshots.values() if s.status == SnapshotStatus.COMPLETE
        )

    async def find_expired(self, retention_days: int) -> list[Snapshot]:
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        return [s for s in self.snapshots.values() if s.created_at < cutoff]

    async def remove(self, snapshot_id: str) -> None:
        async with self._lock:
            self.snapshots.pop(snapshot_id, None)
