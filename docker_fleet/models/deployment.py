"""Deployment-related data models."""

from enum import Enum

from pydantic import BaseModel, Field


class DeploymentStatus(str, Enum):
    """Stored deployment states.

    ``snapshotting``, ``restoring`` and ``migrating`` are advisory locks set
    only by the orchestrators.
    """

    RUNNING = "running"
    STOPPED = "stopped"
    SNAPSHOTTING = "snapshotting"
    RESTORING = "restoring"
    MIGRATING = "migrating"

    @property
    def is_busy(self) -> bool:
        return self in BUSY_STATUSES


BUSY_STATUSES = frozenset(
    {DeploymentStatus.SNAPSHOTTING, DeploymentStatus.RESTORING, DeploymentStatus.MIGRATING}
)


class VolumeMapping(BaseModel):
    """A volume declared on a deployment.

    ``host`` is either an absolute bind-mount path or a named volume.
    """

    host: str
    container: str

    @property
    def is_bind_mount(self) -> bool:
        return self.host.startswith("/")


class PortMapping(BaseModel):
    """Host to container port mapping."""

    host: str
    container: str
    protocol: str = "tcp"

    def to_flag(self) -> str:
        suffix = f"/{self.protocol}" if self.protocol and self.protocol != "tcp" else ""
        return f"{self.host}:{self.container}{suffix}"


class EnvVar(BaseModel):
    """Environment variable passed to the container."""

    key: str
    value: str


class App(BaseModel):
    """Image information for the application a deployment runs."""

    id: str
    name: str = ""
    image: str
    tag: str = "latest"
    registry_url: str | None = None

    @property
    def full_image(self) -> str:
        tag = self.tag or "latest"
        if self.registry_url:
            return f"{self.registry_url}/{self.image}:{tag}"
        return f"{self.image}:{tag}"


class Deployment(BaseModel):
    """One instance of an application's container on a specific server."""

    id: str
    app_id: str
    server_id: str
    container_id: str
    container_name: str
    volumes: list[VolumeMapping] = Field(default_factory=list)
    status: DeploymentStatus = DeploymentStatus.RUNNING
    port_mappings: list[PortMapping] = Field(default_factory=list)
    env_vars: list[EnvVar] = Field(default_factory=list)
    restart_policy: str = "unless-stopped"
    network_mode: str = ""
    command: str = ""
    custom_args: str = ""

    @property
    def declared_volumes(self) -> list[VolumeMapping]:
        """Volumes with both a host and a container side."""
        return [v for v in self.volumes if v.host and v.container]

    @property
    def has_volumes(self) -> bool:
        return bool(self.declared_volumes)
