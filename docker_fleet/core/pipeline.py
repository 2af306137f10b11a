"""Building blocks shared by the migration and snapshot pipelines.

- ``PipelineLog``: append-only stage trail, mirrored to the ``pipeline`` logger
- ``ProgressSink``: where stage progress is reported
- ``CancellationToken``: cooperative cancellation checked at safe points
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field

from ..models.results import ProgressEvent
from .logging_config import get_pipeline_logger

LogLevel = Literal["info", "warn", "error"]

STAGE_LABELS = {
    "init": "Starting",
    "stopping": "Stopping container",
    "archiving": "Archiving volumes",
    "downloading": "Downloading archive",
    "preparing": "Preparing target",
    "uploading": "Uploading archive",
    "extracting": "Extracting volumes",
    "creating": "Creating container",
    "finalizing": "Finalizing",
    "cleanup": "Cleaning up",
    "transferring": "Transferring archive",
    "restarting": "Restarting container",
    "recovery": "Recovering",
    "complete": "Complete",
    "failed": "Failed",
    "cancelled": "Cancelled",
}


class StageLogEntry(BaseModel):
    """One entry in a pipeline's stage trail."""

    timestamp: str
    elapsed_ms: int
    level: LogLevel
    stage: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class PipelineLogSummary(BaseModel):
    """Stage trail attached to pipeline results and errors."""

    deployment_id: str
    total_time_ms: int
    logs: list[StageLogEntry]


class PipelineLog:
    """Append-only stage trail for one pipeline run."""

    def __init__(self, deployment_id: str, operation: str = "migration"):
        self.deployment_id = deployment_id
        self.operation = operation
        self.entries: list[StageLogEntry] = []
        self.started_at_ms = int(time.time() * 1000)
        self._started = time.monotonic()
        self.logger = get_pipeline_logger().bind(
            operation=operation, deployment_id=deployment_id
        )

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def log(self, level: LogLevel, stage: str, message: str, **details: Any) -> None:
        self.entries.append(
            StageLogEntry(
                timestamp=datetime.now(UTC).isoformat(),
                elapsed_ms=self.elapsed_ms,
                level=level,
                stage=stage,
                message=message,
                details=details,
            )
        )
        emit = {"info": self.logger.info, "warn": self.logger.warning, "error": self.logger.error}
        emit[level](message, stage=stage, **details)

    def info(self, stage: str, message: str, **details: Any) -> None:
        self.log("info", stage, message, **details)

    def warn(self, stage: str, message: str, **details: Any) -> None:
        self.log("warn", stage, message, **details)

    def error(self, stage: str, message: str, error: BaseException | str | None = None) -> None:
        details = {"error": str(error)} if error is not None else {}
        self.log("error", stage, message, **details)

    def summary(self) -> PipelineLogSummary:
        return PipelineLogSummary(
            deployment_id=self.deployment_id,
            total_time_ms=self.elapsed_ms,
            logs=list(self.entries),
        )


class ProgressSink(Protocol):
    """Receives stage progress from a pipeline."""

    def report(self, stage: str, percent: int, message: str) -> None: ...


class NullProgress:
    """Progress sink that drops everything."""

    def report(self, stage: str, percent: int, message: str) -> None:
        pass


class CallbackProgress:
    """Adapts a ``callback(ProgressEvent)`` into a ``ProgressSink``.

    A failing callback never interrupts the pipeline.
    """

    def __init__(self, callback: Callable[[ProgressEvent], None]):
        self.callback = callback
        self.events: list[ProgressEvent] = []

    def report(self, stage: str, percent: int, message: str) -> None:
        event = ProgressEvent(
            stage=stage,
            percent=percent,
            label=STAGE_LABELS.get(stage, stage.title()),
            message=message,
        )
        self.events.append(event)
        try:
            self.callback(event)
        except Exception as e:
            get_pipeline_logger().warning("Progress callback failed", stage=stage, error=str(e))


class CancellationToken:
    """Cooperative cancellation flag, optionally backed by a predicate."""

    def __init__(self, predicate: Callable[[], bool] | None = None):
        self._cancelled = False
        self._predicate = predicate

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return bool(self._predicate and self._predicate())
