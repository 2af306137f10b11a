"""Data models for Docker Fleet."""

from .deployment import (  # noqa: F401
    App,
    Deployment,
    DeploymentStatus,
    EnvVar,
    PortMapping,
    VolumeMapping,
)
from .results import (  # noqa: F401
    CommandResult,
    ConnectionTestResult,
    MigrationResult,
    ProgressEvent,
)
from .snapshot import Snapshot, SnapshotStatus, StorageStats  # noqa: F401

__all__ = [
    # Deployment models
    "App",
    "Deployment",
    "DeploymentStatus",
    "EnvVar",
    "PortMapping",
    "VolumeMapping",
    # Result models
    "CommandResult",
    "ConnectionTestResult",
    "MigrationResult",
    "ProgressEvent",
    # Snapshot models
    "Snapshot",
    "SnapshotStatus",
    "StorageStats",
]
