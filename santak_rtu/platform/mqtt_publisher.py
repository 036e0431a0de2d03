"""
MQTT publisher for platform telemetry and device status.

Wraps a paho-mqtt client whose network loop runs on a background
thread; publish() only queues the message, so callers on the event
loop never wait for the broker.
"""
import asyncio
import logging
import time
from typing import Optional, Union

import paho.mqtt.client as mqtt

from ..config import PlatformSettings
from ..exceptions import ExternalServiceException

logger = logging.getLogger(__name__)


class MQTTPublisher:
    """Publish-only MQTT client for the platform broker."""

    def __init__(self, settings: PlatformSettings, qos: int = 1):
        """
        Initialize the publisher.

        Args:
            settings: Platform settings (broker address and credentials).
            qos: QoS level used for every publish.
        """
        self.settings = settings
        self.qos = qos
        self.client_id = f"SANTAK-RTU-{int(time.time())}"

        self.client: Optional[mqtt.Client] = None
        self._connected = False
        self._connection_error: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connection_future: Optional[asyncio.Future] = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """
        Connect to the MQTT broker and start the network loop.

        Raises:
            ExternalServiceException: If the broker refuses or does not
                answer within the connect timeout.
        """
        if self._connected:
            logger.debug("MQTT publisher already connected")
            return

        self._loop = asyncio.get_running_loop()
        self._connection_future = self._loop.create_future()

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
        )
        if self.settings.mqtt_username:
            self.client.username_pw_set(
                self.settings.mqtt_username, self.settings.mqtt_password
            )

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        host, port = self.settings.mqtt_host, self.settings.mqtt_port
        logger.info(f"Connecting to MQTT broker at {host}:{port}")

        try:
            self.client.connect_async(host, port)
            self.client.loop_start()
            await asyncio.wait_for(
                self._connection_future,
                timeout=self.settings.mqtt_connect_timeout,
            )
        except asyncio.TimeoutError:
            await self.close()
            raise ExternalServiceException(
                "mqtt", f"connection timeout to {host}:{port}"
            )
        except (OSError, RuntimeError) as e:
            await self.close()
            raise ExternalServiceException(
                "mqtt", f"connection to {host}:{port} failed", str(e)
            ) from e

        logger.info(f"MQTT publisher connected to {host}:{port}")

    async def close(self) -> None:
        """Stop the network loop and disconnect from the broker."""
        if self.client:
            try:
                self.client.loop_stop()
                self.client.disconnect()
                logger.info("MQTT publisher disconnected")
            except (OSError, RuntimeError) as e:
                logger.warning(f"Error during MQTT disconnect: {e}")
            finally:
                self.client = None
                self._connected = False

    def publish(self, topic: str, payload: Union[str, bytes]) -> None:
        """
        Queue a message for publishing.

        Raises:
            ExternalServiceException: If there is no client or paho
                rejects the message.
        """
        if self.client is None:
            raise ExternalServiceException("mqtt", f"not connected, cannot publish to {topic}")

        try:
            info = self.client.publish(topic, payload=payload, qos=self.qos)
        except ValueError as e:
            # Wildcards in the topic, or an oversized payload
            raise ExternalServiceException("mqtt", f"cannot publish to {topic!r}", str(e)) from e
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise ExternalServiceException(
                "mqtt",
                f"publish to {topic} failed",
                mqtt.error_string(info.rc),
            )

    # ==================== MQTT Callbacks ====================

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        """Callback when connected to the broker (paho thread)."""
        if not reason_code.is_failure:
            self._connected = True
            self._connection_error = None
            self._resolve_connection(None)
        else:
            self._connected = False
            self._connection_error = f"Connection refused: {reason_code}"
            logger.error(f"MQTT connection failed: {self._connection_error}")
            self._resolve_connection(RuntimeError(self._connection_error))

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        """Callback when disconnected from the broker (paho thread)."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker (reason: {reason_code})")

    def _resolve_connection(self, error: Optional[Exception]) -> None:
        future = self._connection_future
        if self._loop is None or future is None:
            return

        def _set() -> None:
            if future.done():
                return
            if error is None:
                future.set_result(True)
            else:
                future.set_exception(error)

        self._loop.call_soon_threadsafe(_set)
