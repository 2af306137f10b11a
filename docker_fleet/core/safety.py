"""Safety guards for removing remote temp artifacts."""

import posixpath
import shlex

import structlog

from ..models.results import CommandResult
from .config_loader import Server
from .exceptions import SafetyError
from .privilege import with_elevation

logger = structlog.get_logger()


class RemoteCleanupSafety:
    """Refuses to delete anything on a remote host outside the temp areas."""

    # Allowed roots for deletion of pipeline artifacts
    SAFE_DELETE_PATHS = [
        "/tmp",
        "/var/tmp",
    ]

    # Paths that should NEVER be deleted
    FORBIDDEN_PATHS = [
        "/",
        "/bin",
        "/boot",
        "/dev",
        "/etc",
        "/home",
        "/lib",
        "/proc",
        "/root",
        "/sbin",
        "/sys",
        "/usr",
        "/var",
        "/var/lib",
        "/var/log",
        "/tmp",
        "/var/tmp",
    ]

    def __init__(self, executor, remote_temp_dir: str = "/tmp", timeout: float | None = None):  # noqa: S108
        self.executor = executor
        self.timeout = timeout
        self.safe_roots = list(dict.fromkeys([*self.SAFE_DELETE_PATHS, remote_temp_dir.rstrip("/")]))
        self.logger = logger.bind(component="remote_cleanup_safety")

    def validate_deletion_path(self, file_path: str) -> tuple[bool, str]:
        """Validate that a remote path is safe to delete.

        Returns:
            Tuple of (is_safe: bool, reason: str)
        """
        if not file_path.startswith("/"):
            return False, f"Path '{file_path}' is not absolute"
        if ".." in file_path.split("/"):
            return False, f"Path '{file_path}' contains parent directory traversal"

        normalized = posixpath.normpath(file_path)
        if normalized in self.FORBIDDEN_PATHS:
            return False, f"Path '{normalized}' is a protected directory"

        for root in self.safe_roots:
            if normalized.startswith(root + "/"):
                return True, f"Path validated: {normalized}"

        return False, f"Path '{normalized}' is not in a safe deletion area"

    async def safe_remove(
        self,
        server: Server,
        paths: list[str],
        reason: str,
        elevate: bool = False,
    ) -> CommandResult:
        """Remove temp files/directories on a server after validating every path.

        Raises:
            SafetyError: If any path is outside the safe deletion areas
        """
        for path in paths:
            is_safe, validation_reason = self.validate_deletion_path(path)
            if not is_safe:
                self.logger.error(
                    "Remote deletion blocked by safety check", path=path, reason=validation_reason
                )
                raise SafetyError(f"SAFETY BLOCK: {validation_reason}")

        command = "rm -rf " + " ".join(shlex.quote(p) for p in paths)
        result = await self.executor.exec(
            server, with_elevation(command, force=elevate), timeout=self.timeout
        )

        if result.success:
            self.logger.debug("Remote temp files removed", host=server.key, paths=paths, reason=reason)
        else:
            self.logger.warning(
                "Remote temp cleanup failed", host=server.key, paths=paths, error=result.stderr
            )
        return result
