"""
Shared pytest fixtures for connector tests.

Provides fixtures for:
- Server settings with short timeouts
- Platform gateway mocks
- In-memory device connections
- The platform device identity used by sessions
"""
from typing import List, Union
from unittest.mock import AsyncMock

import pytest

from santak_rtu.config import ServerSettings
from santak_rtu.platform.gateway import DeviceIdentity, PlatformGateway
from tests.simulators import CREDENTIAL


Incoming = Union[bytes, BaseException, type]


class FakeConnection:
    """
    In-memory stand-in for TCPConnection.

    Each receive() returns the next scripted item; exceptions (classes or
    instances) are raised instead. An exhausted script reads as EOF.
    """

    def __init__(self, incoming: List[Incoming], fail_writes: bool = False):
        self.incoming = list(incoming)
        self.fail_writes = fail_writes
        self.written: List[bytes] = []
        self.receive_timeouts: List[float] = []
        self.closed = False
        self.remote_addr = "127.0.0.1:50000"

    async def receive(self, max_bytes: int = 512, timeout: float = 10.0) -> bytes:
        self.receive_timeouts.append(timeout)
        if not self.incoming:
            return b""
        item = self.incoming.pop(0)
        if isinstance(item, BaseException) or (
            isinstance(item, type) and issubclass(item, BaseException)
        ):
            raise item
        return item

    async def write(self, data: bytes, timeout: float = 10.0) -> None:
        if self.fail_writes:
            raise ConnectionResetError("peer reset")
        self.written.append(data)

    async def close(self) -> None:
        self.closed = True

    @property
    def replies(self) -> List[str]:
        return [data.decode("ascii") for data in self.written]


@pytest.fixture
def server_settings() -> ServerSettings:
    """Server settings bound to an ephemeral loopback port."""
    return ServerSettings(
        host="127.0.0.1",
        port=0,
        idle_timeout=0.5,
        write_timeout=1.0,
        max_connections=10,
    )


@pytest.fixture
def device() -> DeviceIdentity:
    return DeviceIdentity(id="dev-1", voucher=CREDENTIAL, device_number="UPS-001")


@pytest.fixture
def gateway(device):
    """Gateway mock that resolves every credential to `device`."""
    mock = AsyncMock(spec=PlatformGateway)
    mock.resolve_device_by_credential.return_value = device
    return mock


@pytest.fixture
def fake_connection():
    """Factory for scripted in-memory connections."""
    def _make(*incoming: Incoming, fail_writes: bool = False) -> FakeConnection:
        return FakeConnection(list(incoming), fail_writes=fail_writes)
    return _make

