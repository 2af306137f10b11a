"""Migration orchestrator: move or copy a deployment between servers."""

import shlex
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ..constants import (
    CONTAINER_ID_LENGTH,
    DEFAULT_RESTART_POLICY,
    MIGRATION_ARCHIVE_PREFIX,
    MIGRATION_PROGRESS,
    MIGRATION_STAGING_PREFIX,
    STAGE_ARCHIVING,
    STAGE_CLEANUP,
    STAGE_COMPLETE,
    STAGE_CREATING,
    STAGE_DOWNLOADING,
    STAGE_EXTRACTING,
    STAGE_FAILED,
    STAGE_FINALIZING,
    STAGE_INIT,
    STAGE_PREPARING,
    STAGE_RECOVERY,
    STAGE_STOPPING,
    STAGE_UPLOADING,
)
from ..core.config_loader import Server
from ..core.exceptions import (
    DeploymentValidationError,
    MigrationCancelledError,
    MigrationError,
)
from ..core.pipeline import CancellationToken, NullProgress, PipelineLog, ProgressSink
from ..core.safety import RemoteCleanupSafety
from ..core.settings import BackupSettings
from ..core.transfer import ArchiveUtils, BaseTransfer
from ..core.volumes import VolumeResolver
from ..models.deployment import (
    App,
    Deployment,
    DeploymentStatus,
    EnvVar,
    PortMapping,
    VolumeMapping,
)
from ..models.results import CommandResult, MigrationResult
from ..utils import archive_filename
from .store import DeploymentStore

logger = structlog.get_logger()


class MigrationRequest(BaseModel):
    """Everything needed to move or copy one deployment."""

    deployment: Deployment
    source_server: Server
    target_server: Server
    new_container_name: str = Field(min_length=1)
    new_port_mappings: list[PortMapping] | None = None
    delete_original: bool = False


@dataclass
class _MigrationRun:
    """Mutable state of one migration, read by rollback."""

    stage: str = STAGE_INIT
    local_archive: Path | None = None
    source_removed: bool = False
    orphaned_target: dict[str, Any] | None = None


def build_create_command(
    container_name: str,
    image: str,
    port_mappings: list[PortMapping],
    env_vars: list[EnvVar],
    volumes: list[VolumeMapping],
    restart_policy: str = DEFAULT_RESTART_POLICY,
    network_mode: str = "",
    custom_args: str = "",
    command: str = "",
) -> str:
    """Build a ``docker create`` command line (container is created, not started)."""
    parts = ["docker", "create", "--name", container_name]

    for port in port_mappings:
        if port.host and port.container:
            parts += ["-p", port.to_flag()]

    for env in env_vars:
        if env.key:
            parts += ["-e", f"{env.key}={env.value}"]

    for volume in volumes:
        if volume.host and volume.container:
            parts += ["-v", f"{volume.host}:{volume.container}"]

    if restart_policy:
        parts += ["--restart", restart_policy]
    if network_mode:
        parts += ["--network", network_mode]
    if custom_args.strip():
        parts += shlex.split(custom_args)

    parts.append(image)

    if command.strip():
        parts += shlex.split(command)

    return " ".join(shlex.quote(part) for part in parts)


class MigrationOrchestrator:
    """Runs the stop/archive/transfer/create/finalize pipeline for one deployment."""

    def __init__(
        self,
        executor,
        transfer: BaseTransfer,
        deployments: DeploymentStore,
        backup_settings: BackupSettings | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self.executor = executor
        self.transfer = transfer
        self.deployments = deployments
        self.settings = backup_settings or BackupSettings()
        self.id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self.volumes = VolumeResolver(executor)
        data_timeout = self.settings.data_command_timeout
        self.archive = ArchiveUtils(executor, timeout=data_timeout)
        self.safety = RemoteCleanupSafety(executor, self.settings.remote_temp_dir, timeout=data_timeout)
        self.logger = logger.bind(component="migration_orchestrator")

    async def migrate(
        self,
        request: MigrationRequest,
        progress: ProgressSink | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> MigrationResult:
        """Move or copy a deployment to another server.

        Args:
            request: Source deployment, servers and target naming
            progress: Receives stage progress
            cancel_token: Checked at the safe points before container creation

        Returns:
            MigrationResult with the new deployment and container ids

        Raises:
            MigrationCancelledError: Cancelled before container creation began
            MigrationError: Any stage failed; the source was restarted first
        """
        progress = progress or NullProgress()
        token = cancel_token or CancellationToken()
        deployment = request.deployment
        log = PipelineLog(deployment.id, "migration")
        run = _MigrationRun()

        log.info(
            STAGE_INIT,
            "Starting migration",
            source=request.source_server.id,
            target=request.target_server.id,
            new_container_name=request.new_container_name,
            delete_original=request.delete_original,
        )
        if deployment.status.is_busy:
            log.warn(
                STAGE_INIT,
                "Deployment already has an operation in progress",
                status=deployment.status.value,
            )

        try:
            self._check_cancelled(token, run)
            await self._stop_source(request, run, log, progress)

            timestamp_ms = log.started_at_ms
            archive_name = archive_filename(MIGRATION_ARCHIVE_PREFIX, deployment.id, timestamp_ms)
            remote_archive = f"{self._remote_temp}/{archive_name}"
            staging_dir = f"{self._remote_temp}/{MIGRATION_STAGING_PREFIX}_{deployment.id}"
            source_volumes = deployment.declared_volumes
            target_volumes = VolumeResolver.target_volumes(source_volumes, request.new_container_name)

            self._check_cancelled(token, run)
            if source_volumes:
                await self._archive_source(request, staging_dir, remote_archive, run, log, progress)
                self._check_cancelled(token, run)

                run.local_archive = Path(self.settings.temp_path) / archive_name
                await self._download(request, staging_dir, remote_archive, run, log, progress)
                self._check_cancelled(token, run)

                await self._prepare_target(request, target_volumes, run, log, progress)
                self._check_cancelled(token, run)

                await self._upload_and_extract(
                    request, target_volumes, staging_dir, remote_archive, run, log, progress
                )
            else:
                log.info(STAGE_ARCHIVING, "Deployment declares no volumes, skipping data transfer")

            # Past this point cancellation is no longer honored
            new_deployment = await self._create_container(request, target_volumes, run, log, progress)
            await self._finalize(request, run, log, progress)

        except Exception as e:
            failed_stage = run.stage
            log.error(STAGE_FAILED, f"Migration failed during {failed_stage}", e)
            await self._rollback(request, run, log)

            if isinstance(e, MigrationCancelledError):
                raise MigrationCancelledError(
                    str(e), failed_stage, log.summary(), run.orphaned_target
                ) from e
            raise MigrationError(
                f"Migration failed during {failed_stage}: {e}",
                failed_stage,
                log.summary(),
                run.orphaned_target,
            ) from e

        verb = "moved" if request.delete_original else "copied"
        self._report(progress, run, log, STAGE_COMPLETE, f"Successfully {verb} deployment")
        return MigrationResult(
            new_deployment_id=new_deployment.id,
            new_container_id=new_deployment.container_id,
            message=f"Deployment {verb} successfully",
            log=log.summary().model_dump(mode="json"),
        )

    @property
    def _remote_temp(self) -> str:
        return self.settings.remote_temp_dir.rstrip("/") or "/tmp"  # noqa: S108

    def _report(
        self, progress: ProgressSink, run: _MigrationRun, log: PipelineLog, stage: str, message: str
    ) -> None:
        run.stage = stage
        log.info(stage, message)
        progress.report(stage, MIGRATION_PROGRESS[stage], message)

    def _check_cancelled(self, token: CancellationToken, run: _MigrationRun) -> None:
        if token.cancelled:
            raise MigrationCancelledError(f"Migration cancelled during {run.stage}", run.stage)

    async def _run(self, server: Server, command: str, action: str, stage: str) -> CommandResult:
        """Run a command whose failure must abort the current stage."""
        result = await self.executor.exec(server, command)
        if not result.success:
            detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}"
            raise MigrationError(f"Failed to {action} on {server.id}: {detail}", stage)
        return result

    async def _stop_source(
        self, request: MigrationRequest, run: _MigrationRun, log: PipelineLog, progress: ProgressSink
    ) -> None:
        deployment = request.deployment
        self._report(progress, run, log, STAGE_STOPPING, "Stopping container on source server")
        await self.deployments.update_status(deployment.id, DeploymentStatus.MIGRATING)

        result = await self.executor.exec(
            request.source_server, f"docker stop {shlex.quote(deployment.container_id)}"
        )
        if not result.success:
            log.warn(
                STAGE_STOPPING,
                "Source container could not be stopped, continuing",
                error=result.stderr.strip(),
            )

    async def _archive_source(
        self,
        request: MigrationRequest,
        staging_dir: str,
        remote_archive: str,
        run: _MigrationRun,
        log: PipelineLog,
        progress: ProgressSink,
    ) -> None:
        source = request.source_server
        volumes = request.deployment.declared_volumes
        self._report(progress, run, log, STAGE_ARCHIVING, f"Archiving {len(volumes)} volume(s)")

        paths = await self.volumes.resolve_all(source, volumes)
        log.info(STAGE_ARCHIVING, "Resolved volume paths", paths=paths)

        missing = await self.volumes.missing_paths(source, paths)
        for path in missing:
            log.warn(STAGE_ARCHIVING, "Volume path does not exist, archiving it empty", path=path)

        await self.archive.stage_indexed(source, paths, staging_dir, skip=set(missing))
        await self.archive.create_staged_archive(source, staging_dir, remote_archive)
        log.info(STAGE_ARCHIVING, "Archive created", archive=remote_archive)

    async def _download(
        self,
        request: MigrationRequest,
        staging_dir: str,
        remote_archive: str,
        run: _MigrationRun,
        log: PipelineLog,
        progress: ProgressSink,
    ) -> None:
        source = request.source_server
        self._report(progress, run, log, STAGE_DOWNLOADING, "Downloading archive from source server")

        size = await self.transfer.download(source, remote_archive, str(run.local_archive))
        log.info(STAGE_DOWNLOADING, "Archive downloaded", local=str(run.local_archive), size_bytes=size)

        cleanup = await self.safety.safe_remove(
            source, [staging_dir, remote_archive], "migration source temp files", elevate=True
        )
        if not cleanup.success:
            log.warn(STAGE_DOWNLOADING, "Failed to remove source temp files", error=cleanup.stderr.strip())

    async def _prepare_target(
        self,
        request: MigrationRequest,
        target_volumes: list[VolumeMapping],
        run: _MigrationRun,
        log: PipelineLog,
        progress: ProgressSink,
    ) -> None:
        target = request.target_server
        self._report(progress, run, log, STAGE_PREPARING, "Preparing volumes on target server")

        for volume in target_volumes:
            if volume.is_bind_mount:
                result = await self.volumes.ensure_directory(target, volume.host)
            else:
                result = await self.volumes.ensure_named_volume(target, volume.host)
            if not result.success:
                raise MigrationError(
                    f"Failed to prepare volume {volume.host} on {target.id}: {result.stderr.strip()}",
                    STAGE_PREPARING,
                )
            log.info(STAGE_PREPARING, "Target volume ready", volume=volume.host)

    async def _upload_and_extract(
        self,
        request: MigrationRequest,
        target_volumes: list[VolumeMapping],
        staging_dir: str,
        remote_archive: str,
        run: _MigrationRun,
        log: PipelineLog,
        progress: ProgressSink,
    ) -> None:
        target = request.target_server
        self._report(progress, run, log, STAGE_UPLOADING, "Uploading archive to target server")
        size = await self.transfer.upload(target, str(run.local_archive), remote_archive)
        log.info(STAGE_UPLOADING, "Archive uploaded", remote=remote_archive, size_bytes=size)

        self._report(progress, run, log, STAGE_EXTRACTING, "Extracting volumes on target server")
        await self.safety.safe_remove(target, [staging_dir], "stale migration staging", elevate=True)
        await self.archive.extract_archive(target, remote_archive, self._remote_temp)

        target_paths = await self.volumes.resolve_all(target, target_volumes)
        for index, path in enumerate(target_paths):
            await self.archive.copy_staged_volume(target, staging_dir, index, path)
            log.info(STAGE_EXTRACTING, "Volume restored on target", index=index, path=path)

        cleanup = await self.safety.safe_remove(
            target, [staging_dir, remote_archive], "migration target temp files", elevate=True
        )
        if not cleanup.success:
            log.warn(STAGE_EXTRACTING, "Failed to remove target temp files", error=cleanup.stderr.strip())

    async def _load_app(self, app_id: str) -> App:
        app = await self.deployments.get_app(app_id)
        if app is None:
            raise DeploymentValidationError(f"App {app_id} not found")
        return app

    async def _create_container(
        self,
        request: MigrationRequest,
        target_volumes: list[VolumeMapping],
        run: _MigrationRun,
        log: PipelineLog,
        progress: ProgressSink,
    ) -> Deployment:
        deployment = request.deployment
        target = request.target_server
        self._report(
            progress, run, log, STAGE_CREATING, f"Creating container {request.new_container_name} on target"
        )

        app = await self._load_app(deployment.app_id)
        image = app.full_image
        port_mappings = (
            request.new_port_mappings
            if request.new_port_mappings is not None
            else deployment.port_mappings
        )

        pull = await self.executor.exec(target, f"docker pull {shlex.quote(image)}")
        if pull.success:
            log.info(STAGE_CREATING, "Image pulled", image=image)
        else:
            log.warn(STAGE_CREATING, "Image pull failed, relying on local image", error=pull.stderr.strip())

        command = build_create_command(
            request.new_container_name,
            image,
            port_mappings,
            deployment.env_vars,
            target_volumes,
            restart_policy=deployment.restart_policy or DEFAULT_RESTART_POLICY,
            network_mode=deployment.network_mode,
            custom_args=deployment.custom_args,
            command=deployment.command,
        )
        result = await self._run(target, command, "create container", STAGE_CREATING)
        container_id = result.stdout.strip()[:CONTAINER_ID_LENGTH]
        if not container_id:
            raise MigrationError("docker create returned no container id", STAGE_CREATING)

        run.orphaned_target = {
            "server_id": target.id,
            "container_id": container_id,
            "container_name": request.new_container_name,
        }
        log.info(STAGE_CREATING, "Container created", container_id=container_id)

        self._report(progress, run, log, STAGE_FINALIZING, "Creating deployment record")
        new_deployment = await self.deployments.create_deployment(
            Deployment(
                id=self.id_factory(),
                app_id=deployment.app_id,
                server_id=target.id,
                container_id=container_id,
                container_name=request.new_container_name,
                volumes=target_volumes,
                status=DeploymentStatus.STOPPED,
                port_mappings=port_mappings,
                env_vars=deployment.env_vars,
                restart_policy=deployment.restart_policy or DEFAULT_RESTART_POLICY,
                network_mode=deployment.network_mode,
                command=deployment.command,
                custom_args=deployment.custom_args,
            )
        )
        run.orphaned_target["deployment_id"] = new_deployment.id
        return new_deployment

    async def _finalize(
        self, request: MigrationRequest, run: _MigrationRun, log: PipelineLog, progress: ProgressSink
    ) -> None:
        deployment = request.deployment
        source = request.source_server

        if request.delete_original:
            self._report(progress, run, log, STAGE_CLEANUP, "Removing source deployment")
            await self._run(
                source,
                f"docker rm {shlex.quote(deployment.container_id)}",
                "remove source container",
                STAGE_CLEANUP,
            )
            run.source_removed = True
            await self.deployments.remove_deployment(deployment.id)
        else:
            self._report(progress, run, log, STAGE_CLEANUP, "Restarting source container")
            result = await self.executor.exec(source, f"docker start {shlex.quote(deployment.container_id)}")
            if not result.success:
                log.warn(STAGE_CLEANUP, "Source container failed to restart", error=result.stderr.strip())
            await self.deployments.update_status(deployment.id, DeploymentStatus.RUNNING)

        self._remove_local_archive(run, log)

    async def _rollback(self, request: MigrationRequest, run: _MigrationRun, log: PipelineLog) -> None:
        """Best-effort recovery. Failures here are logged, never raised."""
        deployment = request.deployment

        if run.source_removed:
            log.warn(STAGE_RECOVERY, "Source container already removed, not restarting it")
        else:
            log.info(STAGE_RECOVERY, "Attempting to restart source container")
            try:
                await self.executor.exec(
                    request.source_server, f"docker start {shlex.quote(deployment.container_id)}"
                )
                log.info(STAGE_RECOVERY, "Source container restarted")
            except Exception as e:
                log.error(STAGE_RECOVERY, "Failed to restart source container", e)

            # the migrating status is cleared even when the source is unreachable
            try:
                await self.deployments.update_status(deployment.id, DeploymentStatus.RUNNING)
            except Exception as e:
                log.error(STAGE_RECOVERY, "Failed to reset source deployment status", e)

        if run.orphaned_target:
            log.warn(
                STAGE_RECOVERY,
                "Target container was created and left in place for manual cleanup",
                **run.orphaned_target,
            )

        self._remove_local_archive(run, log)

    def _remove_local_archive(self, run: _MigrationRun, log: PipelineLog) -> None:
        if run.local_archive is None:
            return
        try:
            run.local_archive.unlink(missing_ok=True)
        except OSError as e:
            log.warn(STAGE_CLEANUP, "Failed to remove local temp archive", error=str(e))
