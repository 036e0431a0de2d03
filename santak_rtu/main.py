"""
SANTAK-RTU Connector - Main Entry Point.

Starts the connector that:
1. Accepts TCP connections from SANTAK UPS devices
2. Registers each device against the platform by its registration message
3. Runs the WA/Q6 poll cycle and publishes telemetry and status
4. Serves the plugin HTTP API and sends plugin heartbeats
"""
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn

from .api import create_app
from .config import ConnectorSettings, get_settings, load_settings
from .connection.tcp_connection import TCPConnection
from .connection.tcp_server import TCPServer
from .exceptions import ExternalServiceException
from .logging_config import setup_logging
from .platform.platform_client import PlatformClient
from .protocol.session import DeviceSession

logger = logging.getLogger(__name__)


class ConnectorServer:
    """
    Main connector orchestrator.

    Wires the platform client, the device TCP server, the heartbeat
    task and the plugin HTTP API together.
    """

    def __init__(
        self,
        settings: Optional[ConnectorSettings] = None,
        platform_client: Optional[PlatformClient] = None,
    ):
        """
        Initialize the connector.

        Args:
            settings: Connector settings.
            platform_client: Platform client. Created from settings if
                not provided.
        """
        self.settings = settings or get_settings()
        self.platform_client = platform_client or PlatformClient(self.settings.platform)

        self.tcp_server: Optional[TCPServer] = None
        self.http_server: Optional[uvicorn.Server] = None

        self._tasks: List[asyncio.Task] = []
        self._running = False
        self._shutdown_event = asyncio.Event()

    def handle_connection(self, connection: TCPConnection) -> asyncio.Task:
        """Start a device session for a new connection on its own task."""
        session = DeviceSession(connection, self.platform_client, self.settings.server)
        return asyncio.create_task(
            session.run(),
            name=f"session-{connection.connection_id}",
        )

    async def start(self, serve_http: bool = True) -> None:
        """
        Start the connector.

        Args:
            serve_http: Whether to serve the plugin HTTP API.
        """
        logger.info("=========== SANTAK-RTU connector starting ===========")

        await self.platform_client.connect()
        logger.info("Platform client connected")

        self.tcp_server = TCPServer(
            connection_handler=self.handle_connection,
            settings=self.settings.server,
        )
        await self.tcp_server.start()

        self._tasks.append(
            asyncio.create_task(self._heartbeat_loop(), name="plugin-heartbeat")
        )

        if serve_http:
            server = self.settings.server
            self.http_server = uvicorn.Server(
                uvicorn.Config(
                    create_app(self.platform_client),
                    host=server.http_host,
                    port=server.http_port,
                    log_config=None,
                )
            )
            self._tasks.append(
                asyncio.create_task(self.http_server.serve(), name="plugin-http")
            )
            logger.info(f"Plugin HTTP API on {server.http_host}:{server.http_port}")

        self._running = True
        logger.info(
            f"Connector started on "
            f"{self.settings.server.host}:{self.settings.server.port}"
        )

    async def stop(self) -> None:
        """Stop the connector."""
        if not self._running:
            return

        logger.info("Stopping connector...")
        self._running = False

        if self.http_server:
            self.http_server.should_exit = True

        if self.tcp_server:
            await self.tcp_server.stop()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.platform_client.disconnect()

        self._shutdown_event.set()
        logger.info("Connector stopped")

    async def serve_forever(self) -> None:
        """Run the connector until shutdown."""
        await self._shutdown_event.wait()

    async def _heartbeat_loop(self) -> None:
        """Send the plugin heartbeat at a fixed interval."""
        platform = self.settings.platform
        while True:
            await asyncio.sleep(platform.heartbeat_interval)
            try:
                await self.platform_client.send_heartbeat(platform.service_identifier)
                logger.debug("Heartbeat sent")
            except ExternalServiceException as e:
                logger.error(f"Failed to send heartbeat: {e}")

    def get_stats(self) -> dict:
        """Get connector statistics."""
        stats = {
            "running": self._running,
            "cached_devices": len(self.platform_client.cached_credentials),
        }
        if self.tcp_server:
            stats["tcp_server"] = self.tcp_server.get_stats()
        return stats


def setup_signal_handlers(server: ConnectorServer, loop: asyncio.AbstractEventLoop) -> None:
    """Setup signal handlers for graceful shutdown."""
    def signal_handler():
        logger.info("Received shutdown signal")
        loop.create_task(server.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: signal_handler())


async def main(settings: ConnectorSettings) -> None:
    """Run the connector until a shutdown signal arrives."""
    server = ConnectorServer(settings)
    setup_signal_handlers(server, asyncio.get_running_loop())

    try:
        await server.start()
        await server.serve_forever()
    finally:
        await server.stop()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="santak-rtu",
        description="SANTAK-RTU protocol plugin",
    )
    parser.add_argument(
        "-c", "--config",
        default="configs/config.yaml",
        help="config file path",
    )
    return parser.parse_args(argv)


def cli(argv: Optional[List[str]] = None) -> int:
    """Console script entry point."""
    args = parse_args(argv)
    config_path = Path(args.config)

    if not config_path.is_file():
        print(f"Config file not found: {config_path}", file=sys.stderr)
        return 1

    settings = load_settings(config_path)
    setup_logging(settings.log)
    logger.info(
        f"Config loaded from {config_path}: port={settings.server.port}, "
        f"http_port={settings.server.http_port}, "
        f"max_connections={settings.server.max_connections}, "
        f"platform={settings.platform.url}, mqtt={settings.platform.mqtt_broker}"
    )

    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except ExternalServiceException as e:
        logger.error(f"Connector failed to start: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(cli())
