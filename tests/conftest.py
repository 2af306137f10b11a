"""Shared pytest fixtures for Docker Fleet tests."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from paramiko import SSHClient
from structlog.testing import capture_logs

from docker_fleet.core.config_loader import Server
from docker_fleet.core.settings import BackupSettings
from docker_fleet.core.transfer.base import BaseTransfer
from docker_fleet.models import App, Deployment, DeploymentStatus, VolumeMapping
from docker_fleet.models.results import CommandResult
from docker_fleet.services.store import InMemoryDeploymentStore, InMemorySnapshotStore


class FakeExecutor:
    """Scripted stand-in for ``CommandExecutor``.

    Responses are matched by substring against the command, most recently
    registered rule first. Unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.commands: list[tuple[str, str]] = []
        self.timeouts: dict[str, float | None] = {}
        self._rules: list[tuple[str, str | None, CommandResult | Exception]] = []

    def respond(
        self,
        pattern: str,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        server_id: str | None = None,
    ) -> None:
        self._rules.insert(
            0, (pattern, server_id, CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code))
        )

    def raise_on(self, pattern: str, error: Exception, server_id: str | None = None) -> None:
        self._rules.insert(0, (pattern, server_id, error))

    async def exec(self, server: Server, command: str, timeout: float | None = None) -> CommandResult:
        self.commands.append((server.id, command))
        self.timeouts[command] = timeout
        for pattern, server_id, outcome in self._rules:
            if pattern in command and (server_id is None or server_id == server.id):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return CommandResult(stdout="", stderr="", exit_code=0)

    def ran(self, pattern: str, server_id: str | None = None) -> list[str]:
        """Commands containing ``pattern`` (optionally on one server)."""
        return [
            command
            for sid, command in self.commands
            if pattern in command and (server_id is None or sid == server_id)
        ]


class FakeTransfer(BaseTransfer):
    """File transfer that keeps "remote" files in a dict."""

    def __init__(self, download_payload: bytes = b"archive-bytes"):
        super().__init__()
        self.download_payload = download_payload
        self.remote_files: dict[tuple[str, str], bytes] = {}
        self.downloads: list[tuple[str, str, str]] = []
        self.uploads: list[tuple[str, str, str]] = []
        self.fail_download: Exception | None = None
        self.fail_upload: Exception | None = None

    def get_transfer_type(self) -> str:
        return "fake"

    async def download(self, server: Server, remote_path: str, local_path: str) -> int:
        self.downloads.append((server.id, remote_path, local_path))
        if self.fail_download:
            raise self.fail_download
        data = self.remote_files.get((server.id, remote_path), self.download_payload)
        Path(local_path).parent.mkdir(parents=True, exist_ok=True)
        Path(local_path).write_bytes(data)
        return len(data)

    async def upload(self, server: Server, local_path: str, remote_path: str) -> int:
        self.uploads.append((server.id, local_path, remote_path))
        if self.fail_upload:
            raise self.fail_upload
        data = Path(local_path).read_bytes()
        self.remote_files[(server.id, remote_path)] = data
        return len(data)


@pytest.fixture(autouse=True)
def captured_logs():
    """Collect structlog events instead of printing them to stdout."""
    with capture_logs() as logs:
        yield logs


@pytest.fixture
def source_server() -> Server:
    return Server(
        id="source",
        name="source",
        host="10.0.0.1",
        username="deploy",
        private_key_path="/keys/id_ed25519",
    )


@pytest.fixture
def target_server() -> Server:
    return Server(
        id="target",
        name="target",
        host="10.0.0.2",
        username="deploy",
        private_key_path="/keys/id_ed25519",
    )


@pytest.fixture
def app() -> App:
    return App(id="app1", name="web", image="nginx", tag="1.25")


@pytest.fixture
def deployment(source_server: Server) -> Deployment:
    return Deployment(
        id="dep1",
        app_id="app1",
        server_id=source_server.id,
        container_id="c0ffee123456",
        container_name="web",
        volumes=[VolumeMapping(host="/data", container="/app/data")],
        status=DeploymentStatus.RUNNING,
    )


@pytest.fixture
def backup_settings(tmp_path: Path) -> BackupSettings:
    return BackupSettings(
        storage_path=str(tmp_path / "backups"),
        temp_path=str(tmp_path / "tmp"),
        max_storage_gb=1,
        retention_days=30,
        remote_temp_dir="/tmp",
        data_command_timeout=3600,
    )


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def transfer() -> FakeTransfer:
    return FakeTransfer()


@pytest.fixture
def deployment_store(app: App, deployment: Deployment) -> InMemoryDeploymentStore:
    return InMemoryDeploymentStore(apps=[app], deployments=[deployment])


@pytest.fixture
def snapshot_store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def mock_ssh_client():
    """Create a mock SSH client with a live transport."""
    client = MagicMock(spec=SSHClient)
    transport = MagicMock()
    transport.is_active.return_value = True
    transport.send_ignore = MagicMock()
    client.get_transport.return_value = transport
    return client
