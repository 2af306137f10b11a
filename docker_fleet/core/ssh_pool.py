"""SSH connection pool manager for agentless remote operations."""

import asyncio
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, AsyncGenerator

import structlog
from paramiko import AutoAddPolicy, SSHClient

from .exceptions import TransportError

if TYPE_CHECKING:
    from .config_loader import Server

logger = structlog.get_logger()


def pool_key(host: str, user: str) -> str:
    """Key identifying one pooled connection."""
    return f"{user}@{host}"


@dataclass
class PoolEntry:
    """A pooled SSH connection with reference and channel counters."""

    client: SSHClient
    host: str
    user: str
    port: int = 22
    created_at: datetime = field(default_factory=datetime.now)
    last_used_at: datetime = field(default_factory=datetime.now)
    ref_count: int = 1
    channel_count: int = 1

    @property
    def key(self) -> str:
        return pool_key(self.host, self.user)

    def is_alive(self) -> bool:
        """Check if the connection is still alive."""
        try:
            transport = self.client.get_transport()
            if transport and transport.is_active():
                transport.send_ignore()
                return True
        except Exception:
            pass
        return False

    def touch(self) -> None:
        """Update last used timestamp."""
        self.last_used_at = datetime.now()

    def idle_seconds(self, now: datetime | None = None) -> float:
        return ((now or datetime.now()) - self.last_used_at).total_seconds()


class SSHConnectionPool:
    """Owns long-lived SSH connections keyed by ``user@host``.

    A connection is shared by every caller until it has ``channel_ceiling``
    channels open; the next acquire then replaces it with a fresh connection.
    The replaced connection is retired, not closed: it leaves the map and is
    closed once its last in-flight reference is released.
    Unreferenced connections are closed by a periodic reaper once idle for
    ``idle_timeout`` seconds. All map and counter mutation happens under one
    lock.
    """

    def __init__(
        self,
        channel_ceiling: int = 8,
        connect_timeout: float = 10,
        idle_timeout: float = 300,  # 5 minutes
        reap_interval: float = 60,  # 1 minute
    ):
        """Initialize SSH connection pool.

        Args:
            channel_ceiling: Channels per connection before it is torn down and replaced
            connect_timeout: Connect/banner/auth timeout in seconds
            idle_timeout: Idle seconds before an unreferenced connection is closed
            reap_interval: Interval between reaper passes in seconds
        """
        self.channel_ceiling = channel_ceiling
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout
        self.reap_interval = reap_interval

        self._entries: dict[str, PoolEntry] = {}
        self._retired: list[PoolEntry] = []
        self._lock = asyncio.Lock()
        self._reaper_task: asyncio.Task | None = None
        self._stats = {
            "connections_created": 0,
            "connections_reused": 0,
            "connections_recycled": 0,
            "connections_closed": 0,
            "connection_errors": 0,
        }

        logger.info(
            "SSH connection pool initialized",
            channel_ceiling=channel_ceiling,
            connect_timeout=connect_timeout,
            idle_timeout=idle_timeout,
        )

    @classmethod
    def from_settings(cls, settings: Any) -> "SSHConnectionPool":
        return cls(
            channel_ceiling=settings.channel_ceiling,
            connect_timeout=settings.connect_timeout,
            idle_timeout=settings.idle_timeout,
            reap_interval=settings.reap_interval,
        )

    async def _create_connection(
        self, host: str, user: str, key_path: str, port: int = 22
    ) -> SSHClient:
        """Create a new SSH connection to the host."""
        client = SSHClient()
        client.set_missing_host_key_policy(AutoAddPolicy())

        connect_kwargs = {
            "hostname": host,
            "port": port,
            "username": user,
            "key_filename": key_path,
            "timeout": self.connect_timeout,
            "banner_timeout": self.connect_timeout,
            "auth_timeout": self.connect_timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }

        try:
            await asyncio.wait_for(
                asyncio.to_thread(client.connect, **connect_kwargs),
                timeout=self.connect_timeout + 1,
            )

            transport = client.get_transport()
            if transport:
                transport.set_keepalive(30)

            self._stats["connections_created"] += 1
            logger.debug(
                "Created new SSH connection",
                host=pool_key(host, user),
                total_created=self._stats["connections_created"],
            )
            return client

        except asyncio.TimeoutError:
            self._stats["connection_errors"] += 1
            client.close()
            raise TransportError(f"Connection to {host} timed out") from None
        except Exception as e:
            self._stats["connection_errors"] += 1
            client.close()
            raise TransportError(f"Failed to connect to {host}: {e}") from e

    def _close_entry(self, entry: PoolEntry, reason: str) -> None:
        """Close an entry's connection. The caller removes it from the map."""
        try:
            entry.client.close()
            self._stats["connections_closed"] += 1
            logger.debug(
                "Closed SSH connection",
                host=entry.key,
                reason=reason,
                lifetime=(datetime.now() - entry.created_at).total_seconds(),
            )
        except Exception as e:
            logger.warning("Error closing SSH connection", host=entry.key, error=str(e))

    def _retire_entry(self, entry: PoolEntry) -> None:
        """Take a recycled entry out of service. The caller removes it from the map."""
        if entry.ref_count > 0:
            self._retired.append(entry)
            logger.debug("Retired SSH connection", host=entry.key, ref_count=entry.ref_count)
        else:
            self._close_entry(entry, "channel_ceiling")

    async def acquire(self, host: str, user: str, key_path: str, port: int = 22) -> SSHClient:
        """Get a connection for ``user@host``, reusing the pooled one when possible.

        Args:
            host: Server hostname or IP
            user: SSH username
            key_path: Path to the private key
            port: SSH port

        Returns:
            Connected SSHClient; must be matched by one ``release``

        Raises:
            TransportError: If a new connection cannot be established
        """
        key = pool_key(host, user)

        async with self._lock:
            entry = self._entries.get(key)

            if entry is not None:
                if not entry.is_alive():
                    logger.info("Dropping dead SSH connection", host=key)
                    self._close_entry(entry, "dead")
                    del self._entries[key]
                elif entry.channel_count >= self.channel_ceiling:
                    logger.info(
                        "SSH connection at channel ceiling, reconnecting",
                        host=key,
                        channel_count=entry.channel_count,
                    )
                    self._retire_entry(entry)
                    del self._entries[key]
                    self._stats["connections_recycled"] += 1
                else:
                    entry.ref_count += 1
                    entry.channel_count += 1
                    entry.touch()
                    self._stats["connections_reused"] += 1
                    return entry.client

            client = await self._create_connection(host, user, key_path, port)
            self._entries[key] = PoolEntry(client=client, host=host, user=user, port=port)
            return client

    async def release(self, host: str, user: str, client: SSHClient) -> None:
        """Return a reference to ``client``. Never raises.

        Only the entry that handed out ``client`` is decremented; releasing a
        client the pool no longer tracks is a no-op. A pooled connection is
        never closed here, a retired one is closed with its last reference.
        """
        key = pool_key(host, user)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.client is client:
                entry.ref_count = max(0, entry.ref_count - 1)
                entry.channel_count = max(0, entry.channel_count - 1)
                entry.touch()
                return

            for retired in self._retired:
                if retired.client is client:
                    retired.ref_count = max(0, retired.ref_count - 1)
                    retired.channel_count = max(0, retired.channel_count - 1)
                    if retired.ref_count == 0:
                        self._retired.remove(retired)
                        self._close_entry(retired, "channel_ceiling")
                    return

    @asynccontextmanager
    async def connection(self, server: "Server") -> AsyncGenerator[SSHClient, None]:
        """Acquire a pooled connection for ``server`` and always release it.

        Yields:
            SSHClient instance
        """
        client = await self.acquire(
            server.host, server.username, server.private_key_path, server.port
        )
        try:
            yield client
        finally:
            await self.release(server.host, server.username, client)

    async def evict(self, host: str, user: str, client: SSHClient) -> None:
        """Drop the entry for ``user@host`` if it still holds ``client``."""
        key = pool_key(host, user)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.client is client:
                self._close_entry(entry, "transport_error")
                del self._entries[key]

    async def force_close(self, host: str, user: str) -> bool:
        """Close a connection regardless of outstanding references.

        Used when the owning server record is deleted.

        Returns:
            True if a connection was closed
        """
        key = pool_key(host, user)
        async with self._lock:
            entry = self._entries.pop(key, None)
            retired = [r for r in self._retired if r.key == key]
            for r in retired:
                self._retired.remove(r)
                self._close_entry(r, "forced")
            if entry is None:
                return bool(retired)
            self._close_entry(entry, "forced")
            return True

    async def reap_idle(self) -> int:
        """Close unreferenced connections idle beyond the timeout.

        Returns:
            Number of connections closed
        """
        async with self._lock:
            now = datetime.now()
            reaped = []

            for key, entry in self._entries.items():
                if entry.ref_count > 0:
                    continue
                if entry.idle_seconds(now) > self.idle_timeout:
                    self._close_entry(entry, "idle")
                    reaped.append(key)
                elif not entry.is_alive():
                    self._close_entry(entry, "dead")
                    reaped.append(key)

            for key in reaped:
                del self._entries[key]

            if reaped:
                logger.info(
                    "Reaped idle SSH connections",
                    closed=len(reaped),
                    remaining=len(self._entries),
                )
            return len(reaped)

    async def start_reaper(self) -> None:
        """Start the background reaper task."""
        if self._reaper_task and not self._reaper_task.done():
            return

        async def _reap_loop():
            while True:
                try:
                    await asyncio.sleep(self.reap_interval)
                    await self.reap_idle()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error("Error in SSH pool reaper", error=str(e))

        self._reaper_task = asyncio.create_task(_reap_loop())
        logger.info("Started SSH pool reaper", interval=self.reap_interval)

    async def close_all(self) -> None:
        """Close all connections and stop the reaper."""
        if self._reaper_task:
            self._reaper_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._reaper_task
            self._reaper_task = None

        async with self._lock:
            for entry in [*self._entries.values(), *self._retired]:
                self._close_entry(entry, "shutdown")
            self._entries.clear()
            self._retired.clear()

        logger.info("SSH connection pool closed", stats=self._stats)

    def stats(self) -> dict[str, Any]:
        """Get connection pool statistics."""
        now = datetime.now()
        return {
            **self._stats,
            "total_connections": len(self._entries),
            "retired_connections": len(self._retired),
            "per_connection": [
                {
                    "key": key,
                    "ref_count": entry.ref_count,
                    "channel_count": entry.channel_count,
                    "idle_ms": int(entry.idle_seconds(now) * 1000),
                    "alive": entry.is_alive(),
                }
                for key, entry in self._entries.items()
            ],
        }
