"""Tunable settings for Docker Fleet operations.

Provides centralized pool and backup configuration using Pydantic BaseSettings
with environment variable support for operational tuning.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

GIB = 1024 * 1024 * 1024


class PoolSettings(BaseSettings):
    """SSH transport pool configuration."""

    channel_ceiling: int = Field(
        8,
        alias="SSH_CHANNEL_CEILING",
        description="Channels per connection before it is recycled",
        ge=1,
    )

    connect_timeout: float = Field(
        10, alias="SSH_CONNECT_TIMEOUT", description="SSH connect timeout in seconds", gt=0
    )

    idle_timeout: float = Field(
        300,
        alias="SSH_IDLE_TIMEOUT",
        description="Idle seconds before an unreferenced connection is reaped",
        gt=0,
    )

    reap_interval: float = Field(
        60, alias="SSH_REAP_INTERVAL", description="Seconds between reaper passes", gt=0
    )

    command_timeout: float = Field(
        300, alias="SSH_COMMAND_TIMEOUT", description="Remote command timeout in seconds", gt=0
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class BackupSettings(BaseSettings):
    """Snapshot storage and migration staging configuration."""

    storage_path: str = Field(
        "backups", alias="BACKUP_STORAGE_PATH", description="Local directory for snapshot archives"
    )

    temp_path: str = Field(
        "tmp/backups",
        alias="BACKUP_TEMP_PATH",
        description="Local staging directory for migration archives",
    )

    max_storage_gb: float = Field(
        50, alias="BACKUP_MAX_STORAGE_GB", description="Snapshot storage ceiling in GiB", ge=0
    )

    retention_days: int = Field(
        30, alias="BACKUP_RETENTION_DAYS", description="Days to keep snapshots", ge=1
    )

    remote_temp_dir: str = Field(
        "/tmp",  # noqa: S108 - remote temp dir, not local
        alias="REMOTE_TEMP_DIR",
        description="Temp directory on remote hosts",
    )

    data_command_timeout: float = Field(
        21600,
        alias="DATA_COMMAND_TIMEOUT",
        description="Timeout in seconds for remote tar, copy and cleanup of volume data",
        gt=0,
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @property
    def max_storage_bytes(self) -> int:
        return int(self.max_storage_gb * GIB)
