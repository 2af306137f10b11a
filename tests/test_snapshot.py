"""Tests for the snapshot orchestrator."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from docker_fleet.core.exceptions import (
    DeploymentValidationError,
    QuotaError,
    SnapshotError,
    TransportError,
)
from docker_fleet.core.pipeline import CallbackProgress
from docker_fleet.core.settings import GIB
from docker_fleet.models import DeploymentStatus, Snapshot, SnapshotStatus
from docker_fleet.services.snapshot import SnapshotOrchestrator
from docker_fleet.services.store import InMemorySnapshotStore


@pytest.fixture
def orchestrator(executor, transfer, deployment_store, snapshot_store, backup_settings):
    ids = iter(f"snap-{i}" for i in range(1, 10))
    executor.respond("stat -c%s", stdout="2048\n")
    return SnapshotOrchestrator(
        executor,
        transfer,
        deployment_store,
        snapshot_store,
        backup_settings,
        id_factory=lambda: next(ids),
    )


def stored_snapshot(snapshot_id: str, size: int, age_days: int = 0, status=SnapshotStatus.COMPLETE):
    return Snapshot(
        id=snapshot_id,
        deployment_id="dep1",
        server_id="source",
        archive_filename=f"snapshot_dep1_{snapshot_id}.tar.gz",
        size_bytes=size,
        status=status,
        volume_paths=["/data"],
        created_at=datetime.now(UTC) - timedelta(days=age_days),
    )


class TestCreateSnapshot:
    """Test snapshot creation."""

    async def test_success(
        self, orchestrator, deployment, source_server, executor, transfer,
        deployment_store, snapshot_store, backup_settings,
    ):
        statuses = {}

        def on_progress(event):
            statuses[event.stage] = deployment_store.deployments["dep1"].status

        progress = CallbackProgress(on_progress)

        snapshot = await orchestrator.create_snapshot(
            deployment, source_server, notes="before upgrade", progress=progress
        )

        assert snapshot.id == "snap-1"
        assert snapshot.status == SnapshotStatus.COMPLETE
        assert snapshot.size_bytes == 2048
        assert snapshot.notes == "before upgrade"
        assert snapshot.volume_paths == ["/data"]
        assert snapshot.archive_filename.startswith("snapshot_dep1_")

        stored = await snapshot_store.get("snap-1")
        assert stored.status == SnapshotStatus.COMPLETE
        assert stored.size_bytes == 2048

        assert statuses["archiving"] == DeploymentStatus.SNAPSHOTTING
        assert deployment_store.deployments["dep1"].status == DeploymentStatus.RUNNING
        assert [(e.stage, e.percent) for e in progress.events] == [
            ("stopping", 10),
            ("archiving", 30),
            ("transferring", 60),
            ("restarting", 90),
            ("complete", 100),
        ]

        remote = f"/tmp/{snapshot.archive_filename}"
        assert executor.ran("docker stop c0ffee123456")
        assert executor.ran(f"sudo tar -czf {remote} -C / data")
        assert executor.ran(f"sudo rm -rf {remote}")
        assert executor.ran("docker start c0ffee123456")
        assert executor.timeouts[f"sudo tar -czf {remote} -C / data"] == 3600
        assert executor.timeouts[f"sudo rm -rf {remote}"] == 3600
        local = Path(backup_settings.storage_path) / snapshot.archive_filename
        assert transfer.downloads == [("source", remote, str(local))]
        assert local.read_bytes() == b"archive-bytes"

    async def test_no_volumes_rejected_before_any_remote_call(
        self, orchestrator, deployment, source_server, executor, snapshot_store
    ):
        """A deployment without volumes fails without stopping the container."""
        empty = deployment.model_copy(update={"volumes": []})

        with pytest.raises(DeploymentValidationError, match="No volumes"):
            await orchestrator.create_snapshot(empty, source_server)

        assert executor.commands == []
        assert snapshot_store.snapshots == {}

    async def test_busy_deployment_logs_warning(
        self, orchestrator, deployment, source_server, captured_logs
    ):
        busy = deployment.model_copy(update={"status": DeploymentStatus.MIGRATING})

        snapshot = await orchestrator.create_snapshot(busy, source_server)

        assert snapshot.status == SnapshotStatus.COMPLETE
        warnings = [e for e in captured_logs if e["event"] == "Deployment already has an operation in progress"]
        assert len(warnings) == 1
        assert warnings[0]["log_level"] == "warning"
        assert warnings[0]["status"] == "migrating"
        assert warnings[0]["operation"] == "snapshot"

    async def test_quota_full_rejected_before_any_remote_call(
        self, executor, transfer, deployment_store, deployment, source_server, backup_settings
    ):
        store = InMemorySnapshotStore([stored_snapshot("old", GIB)])
        orchestrator = SnapshotOrchestrator(executor, transfer, deployment_store, store, backup_settings)

        with pytest.raises(QuotaError, match="quota exceeded"):
            await orchestrator.create_snapshot(deployment, source_server)

        assert executor.commands == []
        assert list(store.snapshots) == ["old"]

    async def test_archive_over_quota_is_never_downloaded(
        self, orchestrator, deployment, source_server, executor, transfer,
        deployment_store, snapshot_store,
    ):
        """An archive larger than the free space is deleted remotely and fails."""
        executor.respond("stat -c%s", stdout=f"{2 * GIB}\n")

        with pytest.raises(SnapshotError) as exc_info:
            await orchestrator.create_snapshot(deployment, source_server)

        error = exc_info.value
        assert error.stage == "archiving"
        assert isinstance(error.__cause__, QuotaError)
        assert transfer.downloads == []
        assert executor.ran("sudo rm -rf /tmp/snapshot_dep1_")
        assert executor.ran("docker start c0ffee123456")
        assert (await snapshot_store.get("snap-1")).status == SnapshotStatus.FAILED
        assert deployment_store.deployments["dep1"].status == DeploymentStatus.RUNNING

    async def test_missing_volume_path_fails(
        self, orchestrator, deployment, source_server, executor, snapshot_store
    ):
        executor.respond("test -e /data", stdout="missing\n")

        with pytest.raises(SnapshotError) as exc_info:
            await orchestrator.create_snapshot(deployment, source_server)

        assert exc_info.value.stage == "archiving"
        assert "/data" in str(exc_info.value)
        assert not executor.ran("tar -czf")
        assert (await snapshot_store.get("snap-1")).status == SnapshotStatus.FAILED

    async def test_late_failure_marks_failed_and_removes_partial_file(
        self, orchestrator, deployment, source_server, executor,
        deployment_store, snapshot_store, backup_settings,
    ):
        """A failure after the download never leaves a creating or complete record."""
        executor.raise_on("docker start", TransportError("connection lost"))

        with pytest.raises(SnapshotError) as exc_info:
            await orchestrator.create_snapshot(deployment, source_server)

        assert exc_info.value.stage == "restarting"
        assert exc_info.value.log.deployment_id == "dep1"
        assert (await snapshot_store.get("snap-1")).status == SnapshotStatus.FAILED
        assert list(Path(backup_settings.storage_path).glob("*.tar.gz")) == []
        assert deployment_store.deployments["dep1"].status == DeploymentStatus.RUNNING
        assert len(executor.ran("docker start")) == 2


class TestRestoreSnapshot:
    """Test snapshot restore."""

    async def test_round_trip(
        self, orchestrator, deployment, source_server, executor, transfer, deployment_store
    ):
        """Restore puts back exactly the archive that was captured, rooted at /."""
        snapshot = await orchestrator.create_snapshot(deployment, source_server)
        executor.commands.clear()
        statuses = {}

        def on_progress(event):
            statuses[event.stage] = deployment_store.deployments["dep1"].status

        progress = CallbackProgress(on_progress)

        await orchestrator.restore_snapshot(snapshot, source_server, deployment, progress=progress)

        remote = f"/tmp/{snapshot.archive_filename}"
        assert transfer.remote_files[("source", remote)] == transfer.download_payload
        assert executor.ran(f"sudo tar -xzpf {remote} -C /")
        assert executor.ran(f"sudo rm -rf {remote}")
        assert [c for _sid, c in executor.commands][0] == "docker stop c0ffee123456"
        assert executor.ran("docker start c0ffee123456")
        assert statuses["extracting"] == DeploymentStatus.RESTORING
        assert deployment_store.deployments["dep1"].status == DeploymentStatus.RUNNING
        assert [(e.stage, e.percent) for e in progress.events] == [
            ("stopping", 10),
            ("transferring", 40),
            ("extracting", 70),
            ("restarting", 90),
            ("complete", 100),
        ]

    async def test_restore_into_busy_deployment_logs_warning(
        self, orchestrator, deployment, source_server, captured_logs
    ):
        snapshot = await orchestrator.create_snapshot(deployment, source_server)
        busy = deployment.model_copy(update={"status": DeploymentStatus.RESTORING})

        await orchestrator.restore_snapshot(snapshot, source_server, busy)

        warnings = [e for e in captured_logs if e["event"] == "Deployment already has an operation in progress"]
        assert [(w["operation"], w["status"]) for w in warnings] == [("restore", "restoring")]

    async def test_missing_archive(self, orchestrator, deployment, source_server, executor):
        snapshot = stored_snapshot("gone", 10)

        with pytest.raises(DeploymentValidationError, match="archive not found"):
            await orchestrator.restore_snapshot(snapshot, source_server, deployment)

        assert executor.commands == []

    async def test_incomplete_snapshot_rejected(self, orchestrator, deployment, source_server):
        snapshot = stored_snapshot("bad", 0, status=SnapshotStatus.FAILED)

        with pytest.raises(DeploymentValidationError, match="only complete snapshots"):
            await orchestrator.restore_snapshot(snapshot, source_server, deployment)

    async def test_upload_failure_restarts_container(
        self, orchestrator, deployment, source_server, executor, transfer, deployment_store
    ):
        snapshot = await orchestrator.create_snapshot(deployment, source_server)
        executor.commands.clear()
        transfer.fail_upload = TransportError("broken pipe")

        with pytest.raises(SnapshotError) as exc_info:
            await orchestrator.restore_snapshot(snapshot, source_server, deployment)

        assert exc_info.value.stage == "transferring"
        assert not executor.ran("tar -xzpf")
        assert executor.ran("docker start c0ffee123456")
        assert deployment_store.deployments["dep1"].status == DeploymentStatus.RUNNING


class TestStorageHousekeeping:
    """Test storage statistics and retention."""

    async def test_storage_stats(self, executor, transfer, deployment_store, backup_settings):
        store = InMemorySnapshotStore([stored_snapshot("a", GIB // 2)])
        orchestrator = SnapshotOrchestrator(executor, transfer, deployment_store, store, backup_settings)

        stats = await orchestrator.storage_stats()

        assert stats.used_bytes == GIB // 2
        assert stats.max_bytes == GIB
        assert stats.available_bytes == GIB - GIB // 2
        assert stats.used_percentage == 50
        assert await orchestrator.has_available_storage(GIB // 2)
        assert not await orchestrator.has_available_storage(GIB)

    async def test_delete_snapshot(self, orchestrator, snapshot_store, backup_settings):
        snapshot = await snapshot_store.create(stored_snapshot("a", 10))
        orchestrator.ensure_backup_dirs()
        archive = orchestrator.archive_path(snapshot)
        archive.write_bytes(b"data")

        await orchestrator.delete_snapshot(snapshot)

        assert not archive.exists()
        assert await snapshot_store.get("a") is None

    async def test_delete_snapshot_without_file(self, orchestrator, snapshot_store):
        snapshot = await snapshot_store.create(stored_snapshot("a", 10))

        await orchestrator.delete_snapshot(snapshot)

        assert await snapshot_store.get("a") is None

    async def test_cleanup_expired(self, orchestrator, snapshot_store):
        for snapshot in (
            stored_snapshot("old1", 1, age_days=45),
            stored_snapshot("old2", 1, age_days=31),
            stored_snapshot("fresh", 1, age_days=2),
        ):
            await snapshot_store.create(snapshot)

        cleaned = await orchestrator.cleanup_expired_snapshots()

        assert cleaned == 2
        assert list(snapshot_store.snapshots) == ["fresh"]

    def test_ensure_backup_dirs(self, orchestrator, backup_settings):
        orchestrator.ensure_backup_dirs()

        assert Path(backup_settings.storage_path).is_dir()
        assert Path(backup_settings.temp_path).is_dir()
