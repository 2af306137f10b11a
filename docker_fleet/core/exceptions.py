"""Core exceptions for Docker Fleet operations."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .pipeline import PipelineLogSummary


class DockerFleetError(Exception):
    """Base exception for Docker Fleet operations."""


class ConfigurationError(DockerFleetError):
    """Configuration validation or loading failed."""


class TransportError(DockerFleetError):
    """SSH transport failed (connect timeout, auth failure, closed socket, channel error)."""


class DeploymentValidationError(DockerFleetError):
    """A deployment cannot be processed in its current shape."""


class QuotaError(DockerFleetError):
    """Backup storage ceiling reached or would be exceeded."""


class SafetyError(DockerFleetError):
    """Safety validation refused a destructive remote operation."""


class PipelineError(DockerFleetError):
    """A migration/snapshot/restore stage failed.

    Carries the stage at which the failure happened and the accumulated
    stage log so callers can report both without parsing the message.
    """

    def __init__(
        self,
        message: str,
        stage: str,
        log: "PipelineLogSummary | None" = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.log = log

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": str(self),
            "stage": self.stage,
            "log": self.log.model_dump(mode="json") if self.log else None,
        }


class MigrationError(PipelineError):
    """Migration pipeline failed.

    ``orphaned_target`` is set when a container (and possibly a deployment
    record) was already created on the target before the failure. It is left
    in place on purpose and must be cleaned up by an operator.
    """

    def __init__(
        self,
        message: str,
        stage: str,
        log: "PipelineLogSummary | None" = None,
        orphaned_target: dict[str, Any] | None = None,
    ):
        super().__init__(message, stage, log)
        self.orphaned_target = orphaned_target

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["orphaned_target"] = self.orphaned_target
        return data


class MigrationCancelledError(MigrationError):
    """Migration was cancelled at a safe point."""


class SnapshotError(PipelineError):
    """Snapshot creation or restore failed."""
