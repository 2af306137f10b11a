"""File transfer and archive modules."""

from .archive import ArchiveError, ArchiveUtils  # noqa: F401
from .base import BaseTransfer  # noqa: F401
from .sftp import SFTPTransfer  # noqa: F401

__all__ = [
    "ArchiveError",
    "ArchiveUtils",
    "BaseTransfer",
    "SFTPTransfer",
]
