"""
Remote tar.gz archive utilities for migrations and snapshots.

Two archive layouts are produced:
- indexed: each volume copied under ``<staging>/<index>`` so several volumes
  reassemble unambiguously on another host (migrations)
- rooted: volume paths stored relative to ``/`` so extraction with ``-C /``
  lands back at each absolute location (snapshots)
"""

import posixpath
import shlex

import structlog

from ...models.results import CommandResult
from ...utils import parse_size
from ..config_loader import Server
from ..exceptions import DockerFleetError
from ..privilege import with_elevation

logger = structlog.get_logger()


class ArchiveError(DockerFleetError):
    """Archive operation failed."""

    pass


def _sudo(command: str) -> str:
    return with_elevation(command, force=True)


class ArchiveUtils:
    """Builds and runs tar commands on remote hosts through a command executor."""

    def __init__(self, executor, timeout: float | None = None):
        self.executor = executor
        self.timeout = timeout
        self.logger = logger.bind(component="archive_utils")

    async def _run(self, server: Server, command: str, action: str) -> CommandResult:
        result = await self.executor.exec(server, command, timeout=self.timeout)
        if not result.success:
            raise ArchiveError(
                f"Failed to {action}: {result.stderr.strip() or result.stdout.strip() or 'exit code ' + str(result.exit_code)}"
            )
        return result

    async def stage_indexed(
        self,
        server: Server,
        volume_paths: list[str],
        staging_dir: str,
        skip: set[str] | None = None,
    ) -> None:
        """Copy each volume's contents into ``<staging_dir>/<index>``.

        Paths in ``skip`` get an empty index directory so indices stay aligned
        with the declared volumes.
        """
        if not volume_paths:
            raise ArchiveError("No volumes to archive")

        skip = skip or set()
        staging = shlex.quote(staging_dir)
        await self._run(
            server,
            _sudo(f"rm -rf {staging}") + " && " + _sudo(f"mkdir -p {staging}"),
            "prepare staging directory",
        )

        for index, path in enumerate(volume_paths):
            index_dir = shlex.quote(f"{staging_dir}/{index}")
            command = _sudo(f"mkdir -p {index_dir}")
            if path not in skip:
                command += (
                    " && "
                    + _sudo(f"tar -C {shlex.quote(path)} -cf - .")
                    + " | "
                    + _sudo(f"tar -C {index_dir} -xpf -")
                )
            await self._run(server, command, f"stage volume {path}")

        self.logger.info(
            "Staged volumes for archiving",
            host=server.key,
            staging_dir=staging_dir,
            volumes=len(volume_paths),
            skipped=len(skip),
        )

    async def create_staged_archive(
        self, server: Server, staging_dir: str, archive_path: str
    ) -> str:
        """Compress a staging directory into ``archive_path``.

        The archive holds the staging directory's basename at its top level.
        """
        parent, name = posixpath.split(staging_dir.rstrip("/"))
        await self._run(
            server,
            f"cd {shlex.quote(parent or '/')} && "
            + _sudo(f"tar -czf {shlex.quote(archive_path)} {shlex.quote(name)}"),
            "create archive",
        )
        self.logger.info("Created staged archive", host=server.key, archive=archive_path)
        return archive_path

    async def create_rooted_archive(
        self, server: Server, volume_paths: list[str], archive_path: str
    ) -> str:
        """Archive absolute paths relative to ``/``."""
        if not volume_paths:
            raise ArchiveError("No volumes to archive")

        relative_paths = " ".join(shlex.quote(p.lstrip("/")) for p in volume_paths)
        await self._run(
            server,
            _sudo(f"tar -czf {shlex.quote(archive_path)} -C / {relative_paths}"),
            "create archive",
        )
        self.logger.info(
            "Created rooted archive",
            host=server.key,
            archive=archive_path,
            paths=volume_paths,
        )
        return archive_path

    async def archive_size(self, server: Server, archive_path: str) -> int:
        """Size of a remote file in bytes (0 if it cannot be determined)."""
        quoted = shlex.quote(archive_path)
        result = await self.executor.exec(
            server, f"stat -c%s {quoted} 2>/dev/null || stat -f%z {quoted}"
        )
        return parse_size(result.stdout)

    async def extract_archive(self, server: Server, archive_path: str, extract_dir: str) -> None:
        """Extract an archive into ``extract_dir``, preserving permissions."""
        await self._run(
            server,
            _sudo(f"tar -xzpf {shlex.quote(archive_path)} -C {shlex.quote(extract_dir)}"),
            f"extract archive into {extract_dir}",
        )
        self.logger.info(
            "Archive extracted successfully", archive=archive_path, destination=extract_dir
        )

    async def copy_staged_volume(
        self, server: Server, staging_dir: str, index: int, target_path: str
    ) -> None:
        """Copy ``<staging_dir>/<index>`` contents into a resolved target path."""
        target = shlex.quote(target_path)
        source = shlex.quote(f"{staging_dir}/{index}/.")
        await self._run(
            server,
            _sudo(f"mkdir -p {target}") + " && " + _sudo(f"cp -a {source} {target}/"),
            f"copy volume {index} into {target_path}",
        )
