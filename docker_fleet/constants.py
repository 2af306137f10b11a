"""Centralized constants for Docker Fleet to eliminate duplicate strings."""

# Docker defaults
DOCKER_VOLUME_ROOT = "/var/lib/docker/volumes"
DEFAULT_RESTART_POLICY = "unless-stopped"
CONTAINER_ID_LENGTH = 12

# Archive naming
MIGRATION_ARCHIVE_PREFIX = "migration"
SNAPSHOT_ARCHIVE_PREFIX = "snapshot"
MIGRATION_STAGING_PREFIX = "migration_vols"
ARCHIVE_SUFFIX = ".tar.gz"

# Migration stages and progress percentages
STAGE_INIT = "init"
STAGE_STOPPING = "stopping"
STAGE_ARCHIVING = "archiving"
STAGE_DOWNLOADING = "downloading"
STAGE_PREPARING = "preparing"
STAGE_UPLOADING = "uploading"
STAGE_EXTRACTING = "extracting"
STAGE_CREATING = "creating"
STAGE_FINALIZING = "finalizing"
STAGE_CLEANUP = "cleanup"
STAGE_COMPLETE = "complete"
STAGE_RECOVERY = "recovery"
STAGE_FAILED = "failed"

# Snapshot stages
STAGE_TRANSFERRING = "transferring"
STAGE_RESTARTING = "restarting"

MIGRATION_PROGRESS = {
    STAGE_STOPPING: 5,
    STAGE_ARCHIVING: 15,
    STAGE_DOWNLOADING: 30,
    STAGE_PREPARING: 50,
    STAGE_UPLOADING: 60,
    STAGE_EXTRACTING: 75,
    STAGE_CREATING: 85,
    STAGE_FINALIZING: 95,
    STAGE_CLEANUP: 98,
    STAGE_COMPLETE: 100,
}

SNAPSHOT_PROGRESS = {
    STAGE_STOPPING: 10,
    STAGE_ARCHIVING: 30,
    STAGE_TRANSFERRING: 60,
    STAGE_RESTARTING: 90,
    STAGE_COMPLETE: 100,
}

RESTORE_PROGRESS = {
    STAGE_STOPPING: 10,
    STAGE_TRANSFERRING: 40,
    STAGE_EXTRACTING: 70,
    STAGE_RESTARTING: 90,
    STAGE_COMPLETE: 100,
}
