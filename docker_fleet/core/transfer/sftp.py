"""SFTP file transfer over pooled SSH connections."""

import asyncio
from pathlib import Path

from paramiko import SFTPClient
from paramiko.ssh_exception import SSHException

from ...utils import format_size
from ..config_loader import Server
from ..exceptions import TransportError
from ..ssh_pool import SSHConnectionPool
from .base import BaseTransfer


class SFTPTransfer(BaseTransfer):
    """Upload/download files with SFTP on a pooled connection.

    Each transfer holds one pool reference (one channel) for its duration.
    """

    def __init__(self, pool: SSHConnectionPool):
        super().__init__()
        self.pool = pool

    def get_transfer_type(self) -> str:
        return "sftp"

    async def upload(self, server: Server, local_path: str, remote_path: str) -> int:
        if not Path(local_path).is_file():
            raise FileNotFoundError(f"Local file not found: {local_path}")

        def _put(sftp: SFTPClient) -> int:
            return sftp.put(local_path, remote_path).st_size or 0

        size = await self._run(server, _put, "upload", remote_path)
        self.logger.info(
            "Uploaded file",
            host=server.key,
            local=local_path,
            remote=remote_path,
            size=format_size(size),
        )
        return size

    async def download(self, server: Server, remote_path: str, local_path: str) -> int:
        Path(local_path).parent.mkdir(parents=True, exist_ok=True)

        def _get(sftp: SFTPClient) -> int:
            sftp.get(remote_path, local_path)
            return Path(local_path).stat().st_size

        size = await self._run(server, _get, "download", remote_path)
        self.logger.info(
            "Downloaded file",
            host=server.key,
            remote=remote_path,
            local=local_path,
            size=format_size(size),
        )
        return size

    async def _run(self, server: Server, operation, direction: str, remote_path: str) -> int:
        async with self.pool.connection(server) as client:

            def _transfer() -> int:
                sftp = client.open_sftp()
                try:
                    return operation(sftp)
                finally:
                    sftp.close()

            try:
                return await asyncio.to_thread(_transfer)
            except (SSHException, EOFError) as e:
                raise TransportError(
                    f"SFTP {direction} of {remote_path} on {server.host} failed: {e}"
                ) from e
