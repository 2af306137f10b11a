"""Orchestration services built on the core."""

from .migration import MigrationOrchestrator, MigrationRequest  # noqa: F401
from .snapshot import SnapshotOrchestrator  # noqa: F401
from .store import (  # noqa: F401
    DeploymentStore,
    InMemoryDeploymentStore,
    InMemorySnapshotStore,
    SnapshotStore,
)

__all__ = [
    "DeploymentStore",
    "InMemoryDeploymentStore",
    "InMemorySnapshotStore",
    "MigrationOrchestrator",
    "MigrationRequest",
    "SnapshotOrchestrator",
    "SnapshotStore",
]
