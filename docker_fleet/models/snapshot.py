"""Snapshot data models."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class SnapshotStatus(str, Enum):
    """Snapshot lifecycle states."""

    CREATING = "creating"
    COMPLETE = "complete"
    FAILED = "failed"


class Snapshot(BaseModel):
    """A volume backup stored in local backup storage."""

    id: str
    deployment_id: str
    server_id: str
    archive_filename: str
    size_bytes: int = 0
    status: SnapshotStatus = SnapshotStatus.CREATING
    notes: str | None = None
    volume_paths: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class StorageStats(BaseModel):
    """Backup storage usage."""

    used_bytes: int
    max_bytes: int
    available_bytes: int
    used_percentage: int
