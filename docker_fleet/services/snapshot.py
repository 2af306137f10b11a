"""Snapshot orchestrator: back up deployment volumes locally and restore them."""

import shlex
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import structlog

from ..constants import (
    SNAPSHOT_ARCHIVE_PREFIX,
    RESTORE_PROGRESS,
    SNAPSHOT_PROGRESS,
    STAGE_ARCHIVING,
    STAGE_COMPLETE,
    STAGE_EXTRACTING,
    STAGE_FAILED,
    STAGE_INIT,
    STAGE_RECOVERY,
    STAGE_RESTARTING,
    STAGE_STOPPING,
    STAGE_TRANSFERRING,
)
from ..core.config_loader import Server
from ..core.exceptions import DeploymentValidationError, QuotaError, SnapshotError
from ..core.pipeline import NullProgress, PipelineLog, ProgressSink
from ..core.safety import RemoteCleanupSafety
from ..core.settings import BackupSettings
from ..core.transfer import ArchiveUtils, BaseTransfer
from ..core.volumes import VolumeResolver
from ..models.deployment import Deployment, DeploymentStatus
from ..models.snapshot import Snapshot, SnapshotStatus, StorageStats
from ..utils import archive_filename, format_size
from .store import DeploymentStore, SnapshotStore

logger = structlog.get_logger()


@dataclass
class _SnapshotRun:
    stage: str = STAGE_INIT
    local_archive: Path | None = None


class SnapshotOrchestrator:
    """Creates and restores volume snapshots and manages backup storage."""

    def __init__(
        self,
        executor,
        transfer: BaseTransfer,
        deployments: DeploymentStore,
        snapshots: SnapshotStore,
        backup_settings: BackupSettings | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self.executor = executor
        self.transfer = transfer
        self.deployments = deployments
        self.snapshots = snapshots
        self.settings = backup_settings or BackupSettings()
        self.id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self.volumes = VolumeResolver(executor)
        data_timeout = self.settings.data_command_timeout
        self.archive = ArchiveUtils(executor, timeout=data_timeout)
        self.safety = RemoteCleanupSafety(executor, self.settings.remote_temp_dir, timeout=data_timeout)
        self.logger = logger.bind(component="snapshot_orchestrator")

    # Storage housekeeping

    def ensure_backup_dirs(self) -> None:
        """Create the local storage and temp directories if missing."""
        Path(self.settings.storage_path).mkdir(parents=True, exist_ok=True)
        Path(self.settings.temp_path).mkdir(parents=True, exist_ok=True)

    def archive_path(self, snapshot: Snapshot) -> Path:
        return Path(self.settings.storage_path) / snapshot.archive_filename

    async def storage_stats(self) -> StorageStats:
        used = await self.snapshots.total_storage_used()
        maximum = self.settings.max_storage_bytes
        return StorageStats(
            used_bytes=used,
            max_bytes=maximum,
            available_bytes=max(0, maximum - used),
            used_percentage=round(used / maximum * 100) if maximum > 0 else 0,
        )

    async def has_available_storage(self, size_bytes: int) -> bool:
        stats = await self.storage_stats()
        return stats.available_bytes >= size_bytes

    async def delete_snapshot(self, snapshot: Snapshot) -> None:
        """Delete a snapshot's archive file, then its record."""
        path = self.archive_path(snapshot)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.error("Failed to delete snapshot archive", path=str(path), error=str(e))
        await self.snapshots.remove(snapshot.id)
        self.logger.info("Snapshot deleted", snapshot_id=snapshot.id)

    async def cleanup_expired_snapshots(self) -> int:
        """Delete snapshots older than the retention period.

        Returns:
            Number of snapshots deleted
        """
        expired = await self.snapshots.find_expired(self.settings.retention_days)
        cleaned = 0
        for snapshot in expired:
            try:
                await self.delete_snapshot(snapshot)
                cleaned += 1
            except Exception as e:
                self.logger.error(
                    "Failed to clean up expired snapshot", snapshot_id=snapshot.id, error=str(e)
                )
        if cleaned:
            self.logger.info(
                "Expired snapshots cleaned up",
                count=cleaned,
                retention_days=self.settings.retention_days,
            )
        return cleaned

    # Pipelines

    def _report(
        self,
        progress: ProgressSink,
        table: dict[str, int],
        run: _SnapshotRun,
        log: PipelineLog,
        stage: str,
        message: str,
    ) -> None:
        run.stage = stage
        log.info(stage, message)
        progress.report(stage, table[stage], message)

    def _warn_if_busy(self, deployment: Deployment, operation: str) -> None:
        if deployment.status.is_busy:
            self.logger.warning(
                "Deployment already has an operation in progress",
                deployment_id=deployment.id,
                status=deployment.status.value,
                operation=operation,
            )

    def _remote_archive(self, filename: str) -> str:
        return f"{self.settings.remote_temp_dir.rstrip('/') or '/tmp'}/{filename}"  # noqa: S108

    async def create_snapshot(
        self,
        deployment: Deployment,
        server: Server,
        notes: str | None = None,
        progress: ProgressSink | None = None,
    ) -> Snapshot:
        """Back up a deployment's volumes into local backup storage.

        The container is stopped for the duration of the archive and restarted
        afterwards, whether or not the snapshot succeeds.

        Raises:
            DeploymentValidationError: The deployment declares no volumes
            QuotaError: Backup storage is already full
            SnapshotError: A stage failed; the snapshot is marked failed
        """
        progress = progress or NullProgress()
        if not deployment.has_volumes:
            raise DeploymentValidationError(
                f"No volumes configured for deployment {deployment.id}"
            )
        self._warn_if_busy(deployment, "snapshot")
        volume_hosts = [v.host for v in deployment.declared_volumes]

        stats = await self.storage_stats()
        if stats.used_bytes >= stats.max_bytes:
            raise QuotaError(
                f"Backup storage quota exceeded ({format_size(stats.used_bytes)} of "
                f"{format_size(stats.max_bytes)} used)"
            )

        self.ensure_backup_dirs()
        snapshot = await self.snapshots.create(
            Snapshot(
                id=self.id_factory(),
                deployment_id=deployment.id,
                server_id=server.id,
                archive_filename=archive_filename(SNAPSHOT_ARCHIVE_PREFIX, deployment.id),
                status=SnapshotStatus.CREATING,
                notes=notes,
                volume_paths=volume_hosts,
            )
        )
        log = PipelineLog(deployment.id, "snapshot")
        run = _SnapshotRun()
        remote_archive = self._remote_archive(snapshot.archive_filename)
        container = shlex.quote(deployment.container_id)

        try:
            await self.deployments.update_status(deployment.id, DeploymentStatus.SNAPSHOTTING)

            self._report(
                progress, SNAPSHOT_PROGRESS, run, log, STAGE_STOPPING,
                f"Stopping container {deployment.container_name}",
            )
            result = await self.executor.exec(server, f"docker stop {container}")
            if not result.success:
                log.warn(STAGE_STOPPING, "Container could not be stopped", error=result.stderr.strip())

            self._report(
                progress, SNAPSHOT_PROGRESS, run, log, STAGE_ARCHIVING, "Creating archive of volume data"
            )
            paths = await self.volumes.resolve_all(server, deployment.declared_volumes)
            missing = await self.volumes.missing_paths(server, paths)
            if missing:
                raise DeploymentValidationError(f"Volume path does not exist: {', '.join(missing)}")

            await self.archive.create_rooted_archive(server, paths, remote_archive)
            size_bytes = await self.archive.archive_size(server, remote_archive)
            log.info(STAGE_ARCHIVING, "Archive created", archive=remote_archive, size_bytes=size_bytes)

            if not await self.has_available_storage(size_bytes):
                await self.safety.safe_remove(
                    server, [remote_archive], "snapshot over quota", elevate=True
                )
                raise QuotaError(
                    f"Not enough backup storage available for {format_size(size_bytes)} archive"
                )

            self._report(
                progress, SNAPSHOT_PROGRESS, run, log, STAGE_TRANSFERRING,
                "Transferring archive to backup storage",
            )
            run.local_archive = self.archive_path(snapshot)
            await self.transfer.download(server, remote_archive, str(run.local_archive))
            cleanup = await self.safety.safe_remove(
                server, [remote_archive], "snapshot remote temp archive", elevate=True
            )
            if not cleanup.success:
                log.warn(STAGE_TRANSFERRING, "Failed to remove remote archive", error=cleanup.stderr.strip())

            self._report(
                progress, SNAPSHOT_PROGRESS, run, log, STAGE_RESTARTING,
                f"Restarting container {deployment.container_name}",
            )
            await self._start_container(server, deployment, log, STAGE_RESTARTING)

            await self.snapshots.update_status(snapshot.id, SnapshotStatus.COMPLETE, size_bytes)
            await self.deployments.update_status(deployment.id, DeploymentStatus.RUNNING)

        except Exception as e:
            failed_stage = run.stage
            log.error(STAGE_FAILED, f"Snapshot failed during {failed_stage}", e)
            await self._recover(server, deployment, log)
            await self.snapshots.update_status(snapshot.id, SnapshotStatus.FAILED)
            if run.local_archive is not None:
                try:
                    run.local_archive.unlink(missing_ok=True)
                except OSError as cleanup_error:
                    log.warn(STAGE_RECOVERY, "Failed to remove partial archive", error=str(cleanup_error))
            raise SnapshotError(
                f"Snapshot failed during {failed_stage}: {e}", failed_stage, log.summary()
            ) from e

        self._report(progress, SNAPSHOT_PROGRESS, run, log, STAGE_COMPLETE, "Snapshot created successfully")
        return snapshot.model_copy(
            update={"status": SnapshotStatus.COMPLETE, "size_bytes": size_bytes}
        )

    async def restore_snapshot(
        self,
        snapshot: Snapshot,
        server: Server,
        deployment: Deployment,
        progress: ProgressSink | None = None,
    ) -> None:
        """Restore a snapshot's volume data onto a deployment's server.

        Archives are rooted at ``/``, so extraction lands every volume back at
        its absolute path.

        Raises:
            DeploymentValidationError: Snapshot is not complete or its archive is missing
            SnapshotError: A stage failed; the container was restarted first
        """
        progress = progress or NullProgress()
        if snapshot.status != SnapshotStatus.COMPLETE:
            raise DeploymentValidationError(
                f"Snapshot {snapshot.id} is {snapshot.status.value}, only complete snapshots can be restored"
            )
        local_archive = self.archive_path(snapshot)
        if not local_archive.is_file():
            raise DeploymentValidationError(f"Snapshot archive not found: {local_archive}")
        self._warn_if_busy(deployment, "restore")

        log = PipelineLog(deployment.id, "restore")
        run = _SnapshotRun()
        remote_archive = self._remote_archive(snapshot.archive_filename)
        container = shlex.quote(deployment.container_id)

        try:
            await self.deployments.update_status(deployment.id, DeploymentStatus.RESTORING)

            self._report(
                progress, RESTORE_PROGRESS, run, log, STAGE_STOPPING,
                f"Stopping container {deployment.container_name}",
            )
            result = await self.executor.exec(server, f"docker stop {container}")
            if not result.success:
                log.warn(STAGE_STOPPING, "Container could not be stopped", error=result.stderr.strip())

            self._report(
                progress, RESTORE_PROGRESS, run, log, STAGE_TRANSFERRING, "Uploading archive to server"
            )
            await self.transfer.upload(server, str(local_archive), remote_archive)

            self._report(progress, RESTORE_PROGRESS, run, log, STAGE_EXTRACTING, "Extracting volume data")
            await self.archive.extract_archive(server, remote_archive, "/")
            cleanup = await self.safety.safe_remove(
                server, [remote_archive], "restore remote temp archive", elevate=True
            )
            if not cleanup.success:
                log.warn(STAGE_EXTRACTING, "Failed to remove remote archive", error=cleanup.stderr.strip())

            self._report(
                progress, RESTORE_PROGRESS, run, log, STAGE_RESTARTING,
                f"Restarting container {deployment.container_name}",
            )
            await self._start_container(server, deployment, log, STAGE_RESTARTING)
            await self.deployments.update_status(deployment.id, DeploymentStatus.RUNNING)

        except Exception as e:
            failed_stage = run.stage
            log.error(STAGE_FAILED, f"Restore failed during {failed_stage}", e)
            await self._recover(server, deployment, log)
            raise SnapshotError(
                f"Restore failed during {failed_stage}: {e}", failed_stage, log.summary()
            ) from e

        self._report(progress, RESTORE_PROGRESS, run, log, STAGE_COMPLETE, "Snapshot restored successfully")

    async def _start_container(
        self, server: Server, deployment: Deployment, log: PipelineLog, stage: str
    ) -> None:
        result = await self.executor.exec(
            server, f"docker start {shlex.quote(deployment.container_id)}"
        )
        if not result.success:
            log.warn(stage, "Container failed to start", error=result.stderr.strip())

    async def _recover(self, server: Server, deployment: Deployment, log: PipelineLog) -> None:
        """Best-effort restart after a failed pipeline. Never raises."""
        try:
            await self._start_container(server, deployment, log, STAGE_RECOVERY)
        except Exception as e:
            log.error(STAGE_RECOVERY, "Failed to restart container", e)
        try:
            await self.deployments.update_status(deployment.id, DeploymentStatus.RUNNING)
        except Exception as e:
            log.error(STAGE_RECOVERY, "Failed to reset deployment status", e)
