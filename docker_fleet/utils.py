"""Utility functions for Docker Fleet."""

import time

from .constants import ARCHIVE_SUFFIX


def format_size(size_bytes: int | float) -> str:
    """Format bytes into human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string with appropriate unit

    Examples:
        >>> format_size(0)
        '0 B'
        >>> format_size(1024)
        '1.0 KB'
        >>> format_size(1536870912)
        '1.4 GB'
    """
    if size_bytes == 0:
        return "0 B"

    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_bytes < 1024.0:
            if unit == "B":
                return f"{int(size_bytes)} {unit}"
            else:
                return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


def archive_filename(prefix: str, deployment_id: str, timestamp_ms: int | None = None) -> str:
    """Build a transient archive name: ``<prefix>_<id>_<timestamp>.tar.gz``.

    Examples:
        >>> archive_filename("snapshot", "dep1", 1700000000000)
        'snapshot_dep1_1700000000000.tar.gz'
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{prefix}_{deployment_id}_{timestamp_ms}{ARCHIVE_SUFFIX}"


def parse_size(output: str) -> int:
    """Parse the first integer line of ``stat``-style output, 0 if there is none."""
    for line in output.splitlines():
        line = line.strip()
        if line.isdigit():
            return int(line)
    return 0
