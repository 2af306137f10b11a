"""Configuration management for Docker Fleet."""

import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError
from .settings import BackupSettings, PoolSettings

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = "config/servers.yml"


class Server(BaseModel):
    """An SSH-reachable Docker server."""

    model_config = ConfigDict(extra="forbid")

    id: str = ""
    name: str = ""
    host: str
    username: str
    private_key_path: str
    port: int = 22
    description: str = ""

    @property
    def key(self) -> str:
        """Pool key for this server."""
        return f"{self.username}@{self.host}"


class FleetConfig(BaseSettings):
    """Main configuration for Docker Fleet."""

    servers: dict[str, Server] = Field(default_factory=dict)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    config_file: str = Field(default=DEFAULT_CONFIG_FILE, alias="DOCKER_FLEET_CONFIG")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def get_server(self, server_id: str) -> Server:
        if server_id not in self.servers:
            raise ConfigurationError(f"Server '{server_id}' not found")
        return self.servers[server_id]


def load_config(config_path: str | None = None) -> FleetConfig:
    """Load configuration from .env, the YAML server file and the environment.

    Args:
        config_path: Optional path to YAML config file

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: If the YAML file is unreadable or a server entry is invalid
    """
    load_dotenv()

    config = FleetConfig()

    default_config_file = os.getenv("DOCKER_FLEET_CONFIG", DEFAULT_CONFIG_FILE)
    project_config_path = Path(config_path or default_config_file)

    if project_config_path.exists():
        yaml_config = _load_yaml_config(project_config_path)
        _apply_server_config(config, yaml_config)
        _apply_settings_sections(config, yaml_config)

    config.config_file = str(project_config_path)

    logger.info(
        "Configuration loaded",
        path=str(project_config_path),
        servers=len(config.servers),
    )
    return config


def _apply_server_config(config: FleetConfig, yaml_config: dict[str, Any]) -> None:
    """Apply server configuration from YAML data."""
    servers = yaml_config.get("servers") or {}
    if not isinstance(servers, dict):
        raise ConfigurationError("'servers' must be a mapping of server id to settings")

    for server_id, server_data in servers.items():
        try:
            server = Server(**{"id": server_id, "name": server_id, **(server_data or {})})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid server '{server_id}': {e}") from e
        config.servers[server_id] = server


def _apply_settings_sections(config: FleetConfig, yaml_config: dict[str, Any]) -> None:
    """Apply ``pool`` and ``backup`` sections; environment variables keep priority."""
    config.pool = _build_settings(PoolSettings, yaml_config.get("pool") or {})
    config.backup = _build_settings(BackupSettings, yaml_config.get("backup") or {})


def _build_settings(settings_cls: type[BaseSettings], section: dict[str, Any]) -> Any:
    overrides = {}
    for name, field in settings_cls.model_fields.items():
        if name not in section:
            continue
        if field.alias and os.getenv(field.alias) is not None:
            continue
        overrides[name] = section[name]

    try:
        return settings_cls(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {settings_cls.__name__} values: {e}") from e


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load YAML configuration file."""
    try:
        content = config_path.read_text(encoding="utf-8")
        content = _expand_yaml_config(content)
        loaded = yaml.safe_load(content)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e

    if not isinstance(loaded, dict):
        return {}
    return loaded


def _expand_yaml_config(content: str) -> str:
    """Expand ``${VAR}`` references for an allowlist of environment variables."""

    allowed_env_vars = {
        "HOME",
        "USER",
        "XDG_CONFIG_HOME",
        "XDG_DATA_HOME",
        "SSH_KEYS_DIR",
        "BACKUP_STORAGE_PATH",
        "BACKUP_TEMP_PATH",
    }

    def replace_var(match):
        var_name = match.group(1)
        if var_name in allowed_env_vars:
            return os.getenv(var_name, match.group(0))
        logger.warning(
            "Environment variable not in allowlist, skipping expansion", variable=var_name
        )
        return match.group(0)

    return re.sub(r"\$\{([^}]+)\}", replace_var, content)
