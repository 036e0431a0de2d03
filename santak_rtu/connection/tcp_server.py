"""
Device-facing TCP listener.

Accepts UPS connections, applies the connection limit and hands every
accepted socket to a session factory that runs it on its own task. A
session that fails only takes down its own connection.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple

from ..config import ServerSettings
from .tcp_connection import TCPConnection

logger = logging.getLogger(__name__)

# Starts the task that drives one accepted connection
SessionFactory = Callable[[TCPConnection], asyncio.Task]


class TCPServer:
    """
    Listener and registry of live device sessions.

    Each accepted socket is wrapped in a TCPConnection and passed to the
    session factory; the returned task is tracked until it finishes.
    """

    def __init__(self, connection_handler: SessionFactory, settings: ServerSettings):
        """
        Args:
            connection_handler: Session factory returning the task that
                serves the connection.
            settings: Bind address, backlog and connection limit.
        """
        self.settings = settings
        self._start_session = connection_handler

        self._server: Optional[asyncio.AbstractServer] = None
        self._sessions: Dict[TCPConnection, asyncio.Task] = {}
        self._pending: List[TCPConnection] = []

        self._accepted = 0
        self._rejected = 0

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def active_connections(self) -> int:
        return len(self._sessions) + len(self._pending)

    @property
    def total_connections(self) -> int:
        return self._accepted

    @property
    def rejected_connections(self) -> int:
        return self._rejected

    @property
    def addresses(self) -> List[Tuple[str, int]]:
        """(host, port) of every listening socket."""
        if self._server is None:
            return []
        return [tuple(sock.getsockname()[:2]) for sock in self._server.sockets]

    async def start(self) -> None:
        """
        Bind and start accepting devices.

        Raises:
            OSError: If the address cannot be bound.
        """
        if self._server is not None:
            logger.warning("Device listener already started")
            return

        self._server = await asyncio.start_server(
            self._on_accept,
            host=self.settings.host,
            port=self.settings.port,
            backlog=self.settings.backlog,
        )
        bound = ", ".join(f"{host}:{port}" for host, port in self.addresses)
        logger.info(
            f"Listening for SANTAK devices on {bound} "
            f"(max {self.settings.max_connections} connections)"
        )

    async def stop(self, timeout: float = 10.0) -> None:
        """
        Stop accepting, close every device socket and wait for sessions.

        Args:
            timeout: Seconds to wait for sessions before cancelling them.
        """
        server, self._server = self._server, None
        if server is None:
            return

        logger.info("Stopping device listener")
        server.close()

        connections = list(self._sessions) + self._pending
        if connections:
            logger.info(f"Closing {len(connections)} device connections")
            await asyncio.gather(
                *(conn.close() for conn in connections),
                return_exceptions=True,
            )

        # Sessions end on their own once their socket is closed
        running = [task for task in self._sessions.values() if not task.done()]
        if running:
            _, stuck = await asyncio.wait(running, timeout=timeout)
            for task in stuck:
                task.cancel()
            if stuck:
                logger.warning(f"Cancelled {len(stuck)} sessions that did not finish")

        # wait_closed() also waits for accepted connections to finish
        await server.wait_closed()

        self._sessions.clear()
        self._pending.clear()
        logger.info("Device listener stopped")

    async def _on_accept(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        if self.active_connections >= self.settings.max_connections:
            self._rejected += 1
            logger.warning(
                f"Rejecting {writer.get_extra_info('peername')}: "
                f"{self.settings.max_connections} devices already connected"
            )
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            return

        connection = TCPConnection(reader, writer)
        self._accepted += 1
        self._pending.append(connection)
        logger.info(
            f"Device connected from {connection.remote_addr} "
            f"({self.active_connections} active)"
        )

        try:
            task = self._start_session(connection)
        except Exception as e:
            logger.error(f"Could not start session for {connection.remote_addr}: {e}")
            await connection.close()
            return
        finally:
            self._pending.remove(connection)

        self._sessions[connection] = task
        task.add_done_callback(lambda t: self._session_done(connection, t))

    def _session_done(self, connection: TCPConnection, task: asyncio.Task) -> None:
        self._sessions.pop(connection, None)

        if task.cancelled():
            logger.debug(f"Session for {connection.remote_addr} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Session for {connection.remote_addr} failed: {exc!r}")
        else:
            logger.debug(f"Session for {connection.remote_addr} finished")

    def get_stats(self) -> dict:
        return {
            "running": self.is_running,
            "host": self.settings.host,
            "port": self.settings.port,
            "active_connections": self.active_connections,
            "total_connections": self._accepted,
            "rejected_connections": self._rejected,
            "max_connections": self.settings.max_connections,
            "connections": [conn.get_stats() for conn in self._sessions],
        }
