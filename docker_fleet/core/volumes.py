"""Volume path resolution for bind mounts and named Docker volumes."""

import shlex

import structlog

from ..constants import DOCKER_VOLUME_ROOT
from ..models.deployment import VolumeMapping
from ..models.results import CommandResult
from .config_loader import Server
from .privilege import with_elevation

logger = structlog.get_logger()


def default_mountpoint(volume_name: str) -> str:
    """Mountpoint of a named volume under the default local driver."""
    return f"{DOCKER_VOLUME_ROOT}/{volume_name}/_data"


def target_volume_name(container_name: str, index: int) -> str:
    """Fresh named-volume identity for a migrated container."""
    return f"{container_name}_vol_{index}"


class VolumeResolver:
    """Resolves declared volumes to absolute host paths on a server."""

    def __init__(self, executor):
        self.executor = executor
        self.logger = logger.bind(component="volume_resolver")

    async def resolve(self, server: Server, volume_host: str) -> str:
        """Resolve a volume's host side to an absolute path.

        Bind mounts pass through unchanged. Named volumes are resolved by
        inspecting the volume, falling back to the default Docker volume
        root when inspection fails.
        """
        if volume_host.startswith("/"):
            return volume_host

        fallback = default_mountpoint(volume_host)
        command = (
            f"docker volume inspect {shlex.quote(volume_host)} --format '{{{{.Mountpoint}}}}' "
            f"2>/dev/null || echo {shlex.quote(fallback)}"
        )
        result = await self.executor.exec(server, command)
        mountpoint = result.stdout.strip().splitlines()[-1].strip() if result.stdout.strip() else ""

        if not mountpoint.startswith("/"):
            self.logger.warning(
                "Volume inspection returned no mountpoint, using default root",
                volume=volume_host,
                host=server.key,
            )
            return fallback
        return mountpoint

    async def resolve_all(self, server: Server, volumes: list[VolumeMapping]) -> list[str]:
        """Resolve every volume, in declaration order."""
        return [await self.resolve(server, volume.host) for volume in volumes]

    async def missing_paths(self, server: Server, paths: list[str]) -> list[str]:
        """Return the resolved paths that do not exist on the server."""
        missing = []
        for path in paths:
            result = await self.executor.exec(
                server,
                with_elevation(f"test -e {shlex.quote(path)}", force=True)
                + " && echo exists || echo missing",
            )
            if result.stdout.strip().endswith("missing"):
                missing.append(path)
        return missing

    async def ensure_named_volume(self, server: Server, volume_name: str) -> CommandResult:
        """Create a named volume on the server (no-op if it already exists)."""
        return await self.executor.exec(
            server, f"docker volume create {shlex.quote(volume_name)} >/dev/null"
        )

    async def ensure_directory(self, server: Server, path: str) -> CommandResult:
        return await self.executor.exec(
            server, with_elevation(f"mkdir -p {shlex.quote(path)}", force=True)
        )

    @staticmethod
    def target_volumes(volumes: list[VolumeMapping], container_name: str) -> list[VolumeMapping]:
        """Map source volumes to target volumes for a migrated container.

        Named volumes get a new identity derived from the container name so
        the source and target deployments never share one; bind mounts keep
        their path.
        """
        return [
            volume
            if volume.is_bind_mount
            else VolumeMapping(host=target_volume_name(container_name, index), container=volume.container)
            for index, volume in enumerate(volumes)
        ]
