"""
Per-connection session state machine for SANTAK UPS devices.

A session registers the device by looking up its first message as a
credential, then drives the half-duplex poll cycle: every received frame
is decoded, published and answered with the next query, alternating
WA and Q6. Silence longer than the idle timeout marks the device offline.

Phases:
    UNAUTHENTICATED -> POLLING_WA -> POLLING_Q6 -> POLLING_WA -> ...
    any phase -> CLOSED
"""
import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ..config import ServerSettings
from ..exceptions import ExternalServiceException, MalformedFrameError
from ..platform.gateway import DeviceStatus, PlatformGateway
from .frame_codec import split_frame
from .telemetry_mapper import FrameKind, TelemetryBundle, describe, map_frame

if TYPE_CHECKING:
    from ..connection.tcp_connection import TCPConnection

logger = logging.getLogger(__name__)

CREDENTIAL_TEMPLATE = '{{"santak_reg_pkg":"{}"}}'


class SessionPhase(str, Enum):
    """Protocol phase of a device session."""
    UNAUTHENTICATED = "unauthenticated"
    POLLING_WA = "polling_wa"
    POLLING_Q6 = "polling_q6"
    CLOSED = "closed"


# Frame kind expected in each polling phase, and the phase that follows it
_EXPECTED_FRAME = {
    SessionPhase.POLLING_WA: FrameKind.WA,
    SessionPhase.POLLING_Q6: FrameKind.Q6,
}
_NEXT_PHASE = {
    SessionPhase.POLLING_WA: SessionPhase.POLLING_Q6,
    SessionPhase.POLLING_Q6: SessionPhase.POLLING_WA,
}
_PHASE_FOR_QUERY = {
    FrameKind.WA: SessionPhase.POLLING_WA,
    FrameKind.Q6: SessionPhase.POLLING_Q6,
}


def build_credential(message: str) -> str:
    """Wrap a raw registration message in the credential envelope."""
    return CREDENTIAL_TEMPLATE.format(message)


class DeviceSession:
    """
    Protocol state machine for one device connection.

    Owned by the task that runs it; nothing in a session is shared with
    other connections except through the platform gateway.
    """

    def __init__(
        self,
        connection: "TCPConnection",
        gateway: PlatformGateway,
        settings: ServerSettings,
    ):
        """
        Initialize the session.

        Args:
            connection: Device connection to drive.
            gateway: Platform gateway for lookups and publishing.
            settings: Server settings (idle timeout, read size).
        """
        self.connection = connection
        self.gateway = gateway
        self.settings = settings

        self._phase = SessionPhase.UNAUTHENTICATED
        self._credential: Optional[str] = None
        self._registration: Optional[str] = None
        self._device_id: Optional[str] = None
        self._deadline = 0.0
        self._replies_sent = 0

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def credential(self) -> Optional[str]:
        return self._credential

    @property
    def device_id(self) -> Optional[str]:
        return self._device_id

    @property
    def replies_sent(self) -> int:
        return self._replies_sent

    @property
    def label(self) -> str:
        """Name used in log lines: the registration message once known."""
        return self._registration or self.connection.remote_addr

    def _reset_deadline(self) -> None:
        self._deadline = asyncio.get_running_loop().time() + self.settings.idle_timeout

    def _time_left(self) -> float:
        return max(0.0, self._deadline - asyncio.get_running_loop().time())

    async def run(self) -> None:
        """
        Drive the session until the connection closes or goes idle.

        Always leaves the session CLOSED, the connection closed and the
        credential (if any) invalidated.
        """
        self._reset_deadline()

        try:
            while self._phase is not SessionPhase.CLOSED:
                try:
                    data = await self.connection.receive(
                        self.settings.read_size,
                        timeout=self._time_left(),
                    )
                except asyncio.TimeoutError:
                    await self._on_idle_timeout()
                    break
                except (ConnectionError, OSError) as e:
                    logger.error(f"Failed to read from {self.label}: {e}")
                    break

                if not data:
                    logger.warning(f"Device {self.label} closed the connection")
                    break

                await self.handle_message(data.decode("utf-8", errors="replace"))

        except Exception as e:
            logger.exception(f"Error in session for {self.label}: {e}")
        finally:
            self._phase = SessionPhase.CLOSED
            if self._credential is not None:
                await self.gateway.invalidate_credential(self._credential)
            await self.connection.close()

    async def handle_message(self, message: str) -> None:
        """
        Apply one received message to the state machine.

        Args:
            message: Decoded bytes of one receive call.
        """
        if self._phase is SessionPhase.UNAUTHENTICATED:
            await self._register(message)
        elif self._phase in _EXPECTED_FRAME:
            await self._handle_frame(message)
        else:
            logger.warning(f"Ignoring message for {self.label} in phase {self._phase.value}")

    async def _register(self, message: str) -> None:
        logger.info(f"Registration message from {self.connection.remote_addr}: {message!r}")
        self._registration = message
        self._credential = build_credential(message)

        try:
            device = await self.gateway.resolve_device_by_credential(self._credential)
        except ExternalServiceException as e:
            logger.error(f"Device lookup failed for {self.label}: {e}")
            device = None

        if device is None or not device.id:
            logger.warning(f"Authentication failed for {self.label}, closing connection")
            self._phase = SessionPhase.CLOSED
            return

        self._device_id = device.id
        logger.info(f"Device {self._device_id} registered as {self.label}")

        await self._publish_status(DeviceStatus.ONLINE)
        await self._send_query(FrameKind.WA)

    async def _handle_frame(self, message: str) -> None:
        kind = _EXPECTED_FRAME[self._phase]
        logger.debug(f"{self.label} {kind.value} response: {message!r}")

        try:
            bundle = map_frame(kind, split_frame(message))
        except MalformedFrameError as e:
            logger.debug(f"Discarding frame from {self.label}: {e}")
        else:
            await self._publish_telemetry(kind, bundle)

        await self._send_query(_EXPECTED_FRAME[_NEXT_PHASE[self._phase]])

    async def _send_query(self, kind: FrameKind) -> None:
        try:
            await self.connection.write(kind.reply, timeout=self.settings.write_timeout)
        except (ConnectionError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to send {kind.value} to {self.label}: {e}")

        self._replies_sent += 1
        self._phase = _PHASE_FOR_QUERY[kind]
        self._reset_deadline()

    async def _on_idle_timeout(self) -> None:
        logger.warning(f"No data from {self.label} for {self.settings.idle_timeout}s")
        if self._device_id:
            await self._publish_status(DeviceStatus.OFFLINE)
        else:
            logger.warning(f"No device registered on {self.label}, skipping offline status")

    async def _publish_status(self, status: DeviceStatus) -> None:
        try:
            await self.gateway.publish_status(self._device_id, status)
            logger.info(f"Device {self._device_id} status -> {status.name.lower()}")
        except ExternalServiceException as e:
            logger.error(f"Failed to publish status for {self._device_id}: {e}")

    async def _publish_telemetry(self, kind: FrameKind, bundle: TelemetryBundle) -> None:
        logger.info(f"{self._device_id} {kind.value} data: {describe(bundle)}")
        try:
            await self.gateway.publish_telemetry(self._device_id, bundle)
        except ExternalServiceException as e:
            logger.error(f"Failed to publish {kind.value} data for {self._device_id}: {e}")
