"""Result models returned to callers of the core."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class CommandResult(BaseModel):
    """Captured output of one remote command."""

    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class ConnectionTestResult(BaseModel):
    """Outcome of an unpooled SSH probe."""

    status: Literal["online", "offline"]
    error: str | None = None

    @property
    def online(self) -> bool:
        return self.status == "online"


class ProgressEvent(BaseModel):
    """Progress notification for one pipeline stage."""

    stage: str
    percent: int
    label: str
    message: str


class MigrationResult(BaseModel):
    """Outcome of a successful migration."""

    success: bool = True
    new_deployment_id: str
    new_container_id: str
    message: str
    log: dict[str, Any] | None = None
