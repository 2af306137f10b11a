"""Abstract base class for file-transfer primitives."""

from abc import ABC, abstractmethod

import structlog

from ..config_loader import Server

logger = structlog.get_logger()


class BaseTransfer(ABC):
    """Moves files between the local machine and a server."""

    def __init__(self):
        self.logger = logger.bind(component=self.__class__.__name__.lower())

    @abstractmethod
    async def upload(self, server: Server, local_path: str, remote_path: str) -> int:
        """Upload a local file to a server.

        Args:
            server: Target server
            local_path: Local file path
            remote_path: Destination path on the server

        Returns:
            Number of bytes transferred
        """

    @abstractmethod
    async def download(self, server: Server, remote_path: str, local_path: str) -> int:
        """Download a file from a server.

        Args:
            server: Source server
            remote_path: Path on the server
            local_path: Local destination path

        Returns:
            Number of bytes transferred
        """

    @abstractmethod
    def get_transfer_type(self) -> str:
        """Get the name/type of this transfer method."""
