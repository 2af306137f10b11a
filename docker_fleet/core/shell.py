"""Interactive PTY sessions on dedicated (unpooled) SSH connections."""

import asyncio

import structlog
from paramiko import AutoAddPolicy, Channel, SSHClient

from .config_loader import Server
from .exceptions import TransportError

logger = structlog.get_logger()


class ShellSession:
    """A live terminal session. The caller owns it until ``close``."""

    def __init__(self, server: Server, client: SSHClient, channel: Channel):
        self.server = server
        self.client = client
        self.channel = channel
        self.logger = logger.bind(component="shell_session", host=server.key)

    @property
    def closed(self) -> bool:
        return self.channel.closed or self.channel.exit_status_ready()

    async def send(self, data: str | bytes) -> None:
        """Forward user input to the remote shell."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        await asyncio.to_thread(self.channel.sendall, data)

    async def recv(self, size: int = 4096) -> bytes:
        """Read the next chunk of terminal output (empty bytes once closed)."""
        return await asyncio.to_thread(self.channel.recv, size)

    def resize(self, cols: int, rows: int) -> None:
        self.channel.resize_pty(width=cols, height=rows)

    def close(self) -> None:
        try:
            self.channel.close()
        finally:
            self.client.close()
        self.logger.info("Shell session closed")


async def create_shell(
    server: Server,
    term: str = "xterm-color",
    cols: int = 80,
    rows: int = 24,
    connect_timeout: float = 10,
) -> ShellSession:
    """Open a PTY-backed shell on its own connection, outside the pool.

    Args:
        server: Server to connect to
        term: Terminal type reported to the remote side
        cols: Initial terminal width
        rows: Initial terminal height
        connect_timeout: Connect timeout in seconds

    Returns:
        ShellSession owning the connection and channel

    Raises:
        TransportError: If the connection or the shell channel cannot be opened
    """
    client = SSHClient()
    client.set_missing_host_key_policy(AutoAddPolicy())

    try:
        await asyncio.to_thread(
            client.connect,
            hostname=server.host,
            port=server.port,
            username=server.username,
            key_filename=server.private_key_path,
            timeout=connect_timeout,
            banner_timeout=connect_timeout,
            auth_timeout=connect_timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        channel = await asyncio.to_thread(client.invoke_shell, term=term, width=cols, height=rows)
    except Exception as e:
        client.close()
        raise TransportError(f"Failed to open shell on {server.host}: {e}") from e

    logger.info("Shell session opened", host=server.key, term=term)
    return ShellSession(server, client, channel)
