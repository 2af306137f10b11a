"""structlog setup for Docker Fleet: console output plus rotating JSON log files."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, TextIO

import structlog
from structlog.stdlib import BoundLogger, LoggerFactory, ProcessorFormatter

# Log file -> stdlib loggers routed into it. Module loggers resolve to
# ``docker_fleet.*`` names and land in fleet.log.
LOG_FILES = {
    "fleet.log": ("fleet", "docker_fleet"),
    "pipelines.log": ("pipeline",),
}


def _attach_log_file(path: Path, logger_names: tuple[str, ...], level: int, max_bytes: int) -> None:
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=0, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(ProcessorFormatter(processor=structlog.processors.JSONRenderer()))
    for name in logger_names:
        logging.getLogger(name).addHandler(handler)


def setup_logging(
    log_dir: Path | str | None = Path("logs"),
    log_level: str | None = None,
    max_file_size_mb: int = 10,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog on top of stdlib logging.

    Console output goes to ``stream`` (stderr by default; stdout carries
    command output), pretty on a TTY and JSON otherwise. With a ``log_dir``,
    two size-capped JSON files are written as well:
    ``fleet.log`` for pool, executor and general events, and
    ``pipelines.log`` for migration, snapshot and restore stage trails.

    Args:
        log_dir: Directory for log files, or None to log to the console only
        log_level: Level name; falls back to LOG_LEVEL, then INFO
        max_file_size_mb: Size at which a log file is truncated
        stream: Console stream, defaults to sys.stderr
    """
    level_name = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    stream = stream or sys.stderr
    console = logging.StreamHandler(stream)
    console.setLevel(level)
    console.setFormatter(
        ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer()
            if stream.isatty()
            else structlog.processors.JSONRenderer()
        )
    )
    root.addHandler(console)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        for filename, logger_names in LOG_FILES.items():
            _attach_log_file(log_dir / filename, logger_names, level, max_file_size_mb * 1024 * 1024)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )

    get_fleet_logger().info(
        "Logging configured",
        log_dir=str(log_dir.absolute()) if log_dir is not None else None,
        log_level=level_name,
    )


def get_fleet_logger() -> Any:
    """Logger for general operations (fleet.log)."""
    return structlog.get_logger("fleet")


def get_pipeline_logger() -> Any:
    """Logger for pipeline stage trails (pipelines.log)."""
    return structlog.get_logger("pipeline")
