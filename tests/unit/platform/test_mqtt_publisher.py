"""
Unit tests for MQTTPublisher.

The paho client is replaced with a mock; connection results are
delivered by invoking the publisher's callbacks directly.
"""
from unittest.mock import MagicMock, patch

import paho.mqtt.client as mqtt
import pytest

from santak_rtu.config import PlatformSettings
from santak_rtu.exceptions import ExternalServiceException
from santak_rtu.platform.mqtt_publisher import MQTTPublisher


@pytest.fixture
def settings():
    return PlatformSettings(
        mqtt_broker="tcp://broker.test:1884",
        mqtt_username="root",
        mqtt_password="secret",
        mqtt_connect_timeout=0.1,
    )


@pytest.fixture
def publisher(settings):
    return MQTTPublisher(settings)


@pytest.fixture
def paho_client():
    """Patch the paho client class and yield the instance it returns."""
    with patch("santak_rtu.platform.mqtt_publisher.mqtt.Client") as client_cls:
        yield client_cls.return_value


def reason(is_failure: bool) -> MagicMock:
    return MagicMock(is_failure=is_failure)


class TestConnect:
    """Test broker connection."""

    @pytest.mark.asyncio
    async def test_connect_success(self, publisher, paho_client):
        paho_client.connect_async.side_effect = lambda host, port: publisher._on_connect(
            paho_client, None, {}, reason(False)
        )

        await publisher.connect()

        assert publisher.is_connected
        paho_client.username_pw_set.assert_called_once_with("root", "secret")
        paho_client.connect_async.assert_called_once_with("broker.test", 1884)
        paho_client.loop_start.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_refused(self, publisher, paho_client):
        paho_client.connect_async.side_effect = lambda host, port: publisher._on_connect(
            paho_client, None, {}, reason(True)
        )

        with pytest.raises(ExternalServiceException) as exc_info:
            await publisher.connect()

        assert exc_info.value.service == "mqtt"
        assert not publisher.is_connected
        assert publisher.client is None
        paho_client.loop_stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_timeout(self, publisher, paho_client):
        with pytest.raises(ExternalServiceException):
            await publisher.connect()

        assert publisher.client is None

    @pytest.mark.asyncio
    async def test_connect_socket_error(self, publisher, paho_client):
        paho_client.connect_async.side_effect = OSError("name resolution failed")

        with pytest.raises(ExternalServiceException):
            await publisher.connect()

    @pytest.mark.asyncio
    async def test_disconnect_callback_clears_state(self, publisher, paho_client):
        paho_client.connect_async.side_effect = lambda host, port: publisher._on_connect(
            paho_client, None, {}, reason(False)
        )
        await publisher.connect()

        publisher._on_disconnect(paho_client, None, {}, reason(True))

        assert not publisher.is_connected

    @pytest.mark.asyncio
    async def test_close(self, publisher, paho_client):
        paho_client.connect_async.side_effect = lambda host, port: publisher._on_connect(
            paho_client, None, {}, reason(False)
        )
        await publisher.connect()

        await publisher.close()

        paho_client.disconnect.assert_called_once()
        assert publisher.client is None
        assert not publisher.is_connected


class TestPublish:
    """Test message publishing."""

    def test_publish_uses_qos_1(self, publisher):
        publisher.client = MagicMock()
        publisher.client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)

        publisher.publish("devices/status/dev-1", "1")

        publisher.client.publish.assert_called_once_with(
            "devices/status/dev-1", payload="1", qos=1
        )

    def test_publish_rejected_raises(self, publisher):
        publisher.client = MagicMock()
        publisher.client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_NO_CONN)

        with pytest.raises(ExternalServiceException):
            publisher.publish("devices/telemetry", "{}")

    def test_invalid_topic_raises_service_error(self, publisher):
        publisher.client = MagicMock()
        publisher.client.publish.side_effect = ValueError(
            "Publish topic cannot contain wildcards."
        )

        with pytest.raises(ExternalServiceException) as exc_info:
            publisher.publish("devices/status/dev+1", "1")

        assert exc_info.value.service == "mqtt"

    @pytest.mark.parametrize("device_id", ["dev+1", "dev#"])
    def test_wildcard_device_id_rejected_by_paho(self, publisher, device_id):
        publisher.client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)

        with pytest.raises(ExternalServiceException):
            publisher.publish(f"devices/status/{device_id}", "1")

    def test_publish_without_client_raises(self, publisher):
        with pytest.raises(ExternalServiceException):
            publisher.publish("devices/telemetry", "{}")

    def test_client_id_prefix(self, publisher):
        assert publisher.client_id.startswith("SANTAK-RTU-")
