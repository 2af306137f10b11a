"""Remote command execution over pooled SSH connections."""

import asyncio
import socket

import structlog
from paramiko import AutoAddPolicy, SSHClient
from paramiko.ssh_exception import SSHException

from ..models.results import CommandResult, ConnectionTestResult
from .config_loader import Server
from .exceptions import TransportError
from .ssh_pool import SSHConnectionPool, pool_key

logger = structlog.get_logger()


class CommandExecutor:
    """Runs shell commands on servers through an ``SSHConnectionPool``.

    Every acquire is matched by exactly one release, whether the command
    succeeds, exits non-zero or the channel fails.
    """

    def __init__(self, pool: SSHConnectionPool, command_timeout: float = 300):
        self.pool = pool
        self.command_timeout = command_timeout
        self.logger = logger.bind(component="command_executor")

    async def exec(
        self, server: Server, command: str, timeout: float | None = None
    ) -> CommandResult:
        """Execute a command on a server using a pooled connection.

        Args:
            server: Server to run on
            command: Shell command
            timeout: Command timeout in seconds (defaults to the executor's)

        Returns:
            CommandResult with separate stdout/stderr and the exit code

        Raises:
            TransportError: If the connection or channel fails
        """
        timeout = timeout or self.command_timeout

        async with self.pool.connection(server) as client:
            try:
                result = await asyncio.to_thread(self._run, client, command, timeout)
            except (SSHException, OSError, EOFError) as e:
                self.logger.error(
                    "Failed to execute SSH command",
                    host=server.key,
                    command=command[:100],
                    error=str(e),
                )
                # a broken transport must not be handed to the next caller
                await self.pool.evict(server.host, server.username, client)
                raise TransportError(f"Command execution failed on {server.host}: {e}") from e

        self.logger.debug(
            "Executed SSH command",
            host=server.key,
            command=command[:100],
            exit_code=result.exit_code,
        )
        return result

    @staticmethod
    def _run(client: SSHClient, command: str, timeout: float) -> CommandResult:
        _stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
        try:
            stdout_data = stdout.read().decode("utf-8", errors="replace")
            stderr_data = stderr.read().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        except socket.timeout as e:
            stdout.channel.close()
            raise TransportError(f"Command timed out after {timeout}s: {command[:100]}") from e
        return CommandResult(stdout=stdout_data, stderr=stderr_data, exit_code=exit_code)

    async def exec_sequence(self, server: Server, commands: list[str]) -> list[CommandResult]:
        """Execute commands strictly in order without short-circuiting.

        A command that raises is recorded as ``exit_code=-1`` with the error
        message in stderr; later commands still run.
        """
        results = []
        for command in commands:
            try:
                results.append(await self.exec(server, command))
            except Exception as e:
                results.append(CommandResult(stdout="", stderr=str(e), exit_code=-1))
        return results

    async def test_connection(
        self,
        host: str,
        user: str,
        key_path: str,
        port: int = 22,
        timeout: float | None = None,
    ) -> ConnectionTestResult:
        """Probe a server with a standalone, unpooled connection.

        Args:
            host: Server hostname or IP
            user: SSH username
            key_path: Path to the private key
            port: SSH port
            timeout: Connect timeout (defaults to the pool's)

        Returns:
            ConnectionTestResult with status ``online`` or ``offline``
        """
        timeout = timeout or self.pool.connect_timeout
        client = SSHClient()
        client.set_missing_host_key_policy(AutoAddPolicy())

        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    client.connect,
                    hostname=host,
                    port=port,
                    username=user,
                    key_filename=key_path,
                    timeout=timeout,
                    banner_timeout=timeout,
                    auth_timeout=timeout,
                    allow_agent=False,
                    look_for_keys=False,
                ),
                timeout=timeout + 1,
            )
        except asyncio.TimeoutError:
            self.logger.warning("SSH connection test timed out", host=pool_key(host, user))
            return ConnectionTestResult(status="offline", error="Connection timeout")
        except Exception as e:
            self.logger.warning(
                "SSH connection test failed", host=pool_key(host, user), error=str(e)
            )
            return ConnectionTestResult(status="offline", error=str(e))
        finally:
            client.close()

        self.logger.info("SSH connection test successful", host=pool_key(host, user))
        return ConnectionTestResult(status="online")
