"""
Stream wrapper for one UPS device socket.

The SANTAK protocol is strictly half-duplex: the device sends one frame,
the connector answers with one query. A frame is expected to arrive in a
single read, so there is no buffering or reassembly here.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)

CLOSE_TIMEOUT = 5.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TrafficStats:
    """Byte counters and activity timestamps of a device socket."""
    opened_at: datetime = field(default_factory=_utcnow)
    last_seen: Optional[datetime] = None
    frames_in: int = 0
    bytes_in: int = 0
    bytes_out: int = 0

    def record_in(self, size: int) -> None:
        self.frames_in += 1
        self.bytes_in += size
        self.last_seen = _utcnow()

    def record_out(self, size: int) -> None:
        self.bytes_out += size

    def to_dict(self) -> Dict[str, Any]:
        now = _utcnow()
        last_seen = self.last_seen or self.opened_at
        return {
            "opened_at": self.opened_at.isoformat(),
            "uptime_seconds": (now - self.opened_at).total_seconds(),
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "idle_seconds": (now - last_seen).total_seconds(),
            "frames_received": self.frames_in,
            "bytes_received": self.bytes_in,
            "bytes_sent": self.bytes_out,
        }


class TCPConnection:
    """
    One accepted device socket.

    receive() hands back whatever a single read yields, write() sends a
    query and waits for the transport to drain. Both refuse to run once
    the connection is closed.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        connection_id: Optional[UUID] = None,
    ):
        """
        Args:
            reader: Stream reader of the accepted socket.
            writer: Stream writer of the accepted socket.
            connection_id: Identifier used in logs; random when omitted.
        """
        self.reader = reader
        self.writer = writer
        self.connection_id = connection_id or uuid4()
        self.stats = TrafficStats()

        peer = writer.get_extra_info("peername")
        self._peer = f"{peer[0]}:{peer[1]}" if peer else "unknown"
        self._closed = False

    @property
    def remote_addr(self) -> str:
        """Peer address as "host:port"."""
        return self._peer

    @property
    def is_connected(self) -> bool:
        return not self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConnectionError(f"Connection to {self._peer} is closed")

    async def receive(self, max_bytes: int = 512, timeout: float = 10.0) -> bytes:
        """
        Read one frame.

        Args:
            max_bytes: Upper bound for the single read.
            timeout: Seconds to wait for data.

        Returns:
            The bytes of one read; b"" once the device has closed its side.

        Raises:
            asyncio.TimeoutError: Nothing arrived within `timeout`.
            ConnectionError: The connection is closed or was reset.
        """
        self._ensure_open()
        data = await asyncio.wait_for(self.reader.read(max_bytes), timeout=timeout)
        if data:
            self.stats.record_in(len(data))
        return data

    async def write(self, data: bytes, timeout: float = 10.0) -> None:
        """
        Send a query to the device.

        Raises:
            asyncio.TimeoutError: The transport did not drain in time.
            ConnectionError: The connection is closed or was reset.
        """
        self._ensure_open()
        self.writer.write(data)
        await asyncio.wait_for(self.writer.drain(), timeout=timeout)
        self.stats.record_out(len(data))

    async def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        logger.info(f"Closing device connection {self._peer} ({self.connection_id})")
        self.writer.close()
        try:
            await asyncio.wait_for(self.writer.wait_closed(), timeout=CLOSE_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Socket {self._peer} did not close cleanly: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "connection_id": str(self.connection_id),
            "remote_addr": self._peer,
            "connected": not self._closed,
            **self.stats.to_dict(),
        }

    def __repr__(self) -> str:
        state = "open" if not self._closed else "closed"
        return f"<TCPConnection {self._peer} {state} id={self.connection_id}>"
