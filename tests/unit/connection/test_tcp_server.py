"""
Unit tests for TCPServer and TCPConnection.

Runs a real loopback server with device sessions behind it and drives
it with the UPS simulator.
"""
import asyncio
from unittest.mock import call

import pytest
import pytest_asyncio

from santak_rtu.connection import TCPConnection, TCPServer
from santak_rtu.platform.gateway import DeviceStatus
from santak_rtu.protocol.session import DeviceSession
from tests.simulators import CREDENTIAL, REGISTRATION, UPSSimulator


@pytest.fixture
def session_handler(gateway):
    """Connection handler that runs a device session per connection."""
    def _make(settings):
        def handler(connection: TCPConnection) -> asyncio.Task:
            return asyncio.create_task(DeviceSession(connection, gateway, settings).run())
        return handler
    return _make


@pytest_asyncio.fixture
async def start_server(session_handler):
    """Start servers on ephemeral ports and stop them after the test."""
    servers = []

    async def _start(settings, handler=None):
        server = TCPServer(handler or session_handler(settings), settings)
        await server.start()
        servers.append(server)
        return server

    yield _start

    for server in servers:
        await server.stop(timeout=1.0)


@pytest_asyncio.fixture
async def simulators():
    """Track simulators so their sockets are closed after the test."""
    created = []

    async def _connect(server, **kwargs):
        sim = UPSSimulator(**kwargs)
        host, port = server.addresses[0]
        await sim.connect(host, port)
        created.append(sim)
        return sim

    yield _connect

    for sim in created:
        await sim.close()


async def wait_for_condition(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestServerLifecycle:
    """Test start/stop."""

    @pytest.mark.asyncio
    async def test_start_binds_ephemeral_port(self, start_server, server_settings):
        server = await start_server(server_settings)

        assert server.is_running
        host, port = server.addresses[0]
        assert host == "127.0.0.1"
        assert port > 0

    @pytest.mark.asyncio
    async def test_stop_closes_active_connections(
        self, start_server, simulators, server_settings
    ):
        server = await start_server(server_settings)
        sim = await simulators(server)
        await sim.register()

        await server.stop(timeout=1.0)

        assert await sim.wait_closed()
        assert not server.is_running
        assert server.active_connections == 0
        assert server.addresses == []


class TestPollCycle:
    """Test full device sessions over TCP."""

    @pytest.mark.asyncio
    async def test_queries_alternate_over_tcp(
        self, start_server, simulators, server_settings, gateway
    ):
        server = await start_server(server_settings)
        sim = await simulators(server)

        queries = await sim.poll_cycles(4)

        assert queries == [b"WA\r", b"Q6\r", b"WA\r", b"Q6\r", b"WA\r"]
        gateway.resolve_device_by_credential.assert_awaited_once_with(CREDENTIAL)
        assert gateway.publish_telemetry.await_count == 4
        assert server.total_connections == 1

    @pytest.mark.asyncio
    async def test_idle_device_is_marked_offline(
        self, start_server, simulators, server_settings, gateway
    ):
        server = await start_server(server_settings)
        sim = await simulators(server)
        await sim.register()

        assert await sim.wait_closed(timeout=2.0)

        assert gateway.publish_status.await_args_list == [
            call("dev-1", DeviceStatus.ONLINE),
            call("dev-1", DeviceStatus.OFFLINE),
        ]
        gateway.invalidate_credential.assert_awaited_once_with(CREDENTIAL)
        await wait_for_condition(lambda: server.active_connections == 0)

    @pytest.mark.asyncio
    async def test_unknown_device_is_disconnected(
        self, start_server, simulators, server_settings, gateway
    ):
        gateway.resolve_device_by_credential.return_value = None
        server = await start_server(server_settings)
        sim = await simulators(server)

        await sim.send(REGISTRATION)

        assert await sim.wait_closed()
        assert sim.queries == []
        gateway.publish_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_devices_are_independent(
        self, start_server, simulators, server_settings, gateway
    ):
        server = await start_server(server_settings)
        first = await simulators(server)
        second = await simulators(server)

        await asyncio.gather(first.poll_cycles(2), second.poll_cycles(3))

        assert first.queries == [b"WA\r", b"Q6\r", b"WA\r"]
        assert second.queries == [b"WA\r", b"Q6\r", b"WA\r", b"Q6\r"]
        assert server.total_connections == 2


class TestConnectionLimit:
    """Test max_connections enforcement."""

    @pytest.mark.asyncio
    async def test_extra_connection_is_rejected(
        self, start_server, simulators, server_settings
    ):
        settings = server_settings.model_copy(update={"max_connections": 1})
        server = await start_server(settings)
        first = await simulators(server)
        await first.register()

        second = await simulators(server)

        assert await second.wait_closed()
        assert server.rejected_connections == 1
        assert server.active_connections == 1

    @pytest.mark.asyncio
    async def test_failing_handler_closes_connection(
        self, start_server, simulators, server_settings
    ):
        def broken_handler(connection):
            raise RuntimeError("handler failed")

        server = await start_server(server_settings, handler=broken_handler)
        sim = await simulators(server)

        assert await sim.wait_closed()
        await wait_for_condition(lambda: server.active_connections == 0)


class TestTCPConnection:
    """Test the connection wrapper against a live socket."""

    @pytest.mark.asyncio
    async def test_receive_write_and_stats(
        self, start_server, simulators, server_settings
    ):
        accepted = asyncio.get_running_loop().create_future()

        async def hold(connection):
            accepted.set_result(connection)
            while connection.is_connected:
                await asyncio.sleep(0.01)

        server = await start_server(
            server_settings, handler=lambda conn: asyncio.create_task(hold(conn))
        )
        sim = await simulators(server)
        connection = await asyncio.wait_for(accepted, timeout=2.0)

        await sim.send(b"hello")
        assert await connection.receive(512, timeout=1.0) == b"hello"

        await connection.write(b"WA\r", timeout=1.0)
        assert await sim.read_query() == b"WA\r"

        stats = connection.get_stats()
        assert stats["bytes_received"] == 5
        assert stats["bytes_sent"] == 3
        assert stats["remote_addr"].startswith("127.0.0.1:")

        await connection.close()
        await connection.close()
        assert not connection.is_connected
        with pytest.raises(ConnectionError):
            await connection.receive(512, timeout=1.0)

    @pytest.mark.asyncio
    async def test_receive_times_out(self, start_server, simulators, server_settings):
        accepted = asyncio.get_running_loop().create_future()

        async def hold(connection):
            accepted.set_result(connection)
            while connection.is_connected:
                await asyncio.sleep(0.01)

        server = await start_server(
            server_settings, handler=lambda conn: asyncio.create_task(hold(conn))
        )
        await simulators(server)
        connection = await asyncio.wait_for(accepted, timeout=2.0)

        with pytest.raises(asyncio.TimeoutError):
            await connection.receive(512, timeout=0.05)

        await connection.close()
