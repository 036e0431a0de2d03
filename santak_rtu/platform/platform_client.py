"""
Platform client for the IoT platform plugin API.

Looks devices up by voucher over HTTP (with a credential cache),
publishes telemetry and status over MQTT and sends the plugin heartbeat.
"""
import asyncio
import base64
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..config import PlatformSettings
from ..exceptions import ExternalServiceException
from .gateway import DeviceIdentity, DeviceStatus, PlatformGateway
from .mqtt_publisher import MQTTPublisher

logger = logging.getLogger(__name__)

TELEMETRY_TOPIC = "devices/telemetry"
STATUS_TOPIC = "devices/status/{device_id}"

DEVICE_CONFIG_PATH = "/api/v1/plugin/device/config"
HEARTBEAT_PATH = "/api/v1/plugin/heartbeat"


def _json_body(response: httpx.Response, what: str) -> Dict[str, Any]:
    """
    Decode a platform response envelope.

    Raises:
        ExternalServiceException: If the body is not a JSON object.
    """
    try:
        body = response.json()
    except ValueError as e:
        raise ExternalServiceException(
            "platform", f"{what} returned a non-JSON body", response.text[:200]
        ) from e
    if not isinstance(body, dict):
        raise ExternalServiceException(
            "platform", f"{what} returned {type(body).__name__}, expected an object"
        )
    return body


class PlatformClient(PlatformGateway):
    """
    Client for the platform plugin API and MQTT broker.

    Responsibilities:
    - Resolve device vouchers (credentials) to device identities
    - Cache identities per credential, one lookup per credential
    - Publish device status and telemetry
    - Send plugin heartbeats

    The cache is only touched from the event loop, which serializes
    access; concurrent lookups of one credential share a single request.
    """

    def __init__(
        self,
        settings: PlatformSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        publisher: Optional[MQTTPublisher] = None,
    ):
        """
        Initialize the platform client.

        Args:
            settings: Platform settings.
            http_client: Preconfigured HTTP client. Created on connect()
                when not provided.
            publisher: MQTT publisher. Created from settings when not
                provided.
        """
        self.settings = settings
        self._client = http_client
        self.publisher = publisher or MQTTPublisher(settings)

        self._cache: Dict[str, DeviceIdentity] = {}
        self._inflight: Dict[str, "asyncio.Future[Optional[DeviceIdentity]]"] = {}

    async def connect(self) -> None:
        """Initialize the HTTP client and connect to the MQTT broker."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.url,
                headers={"Content-Type": "application/json"},
                timeout=self.settings.request_timeout,
            )
            logger.info(f"Platform client initialized: {self.settings.url}")

        await self.publisher.connect()

    async def disconnect(self) -> None:
        """Close HTTP client and MQTT connection."""
        await self.publisher.close()
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Platform client disconnected")

    # ==================== Device lookup ====================

    async def resolve_device_by_credential(
        self,
        credential: str,
    ) -> Optional[DeviceIdentity]:
        cached = self._cache.get(credential)
        if cached is not None:
            return cached

        pending = self._inflight.get(credential)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_device(credential))
            self._inflight[credential] = pending
            pending.add_done_callback(
                lambda _f: self._inflight.pop(credential, None)
            )

        return await asyncio.shield(pending)

    async def _fetch_device(self, credential: str) -> Optional[DeviceIdentity]:
        """Query the platform for the device registered under a voucher."""
        if self._client is None:
            raise ExternalServiceException("platform", "HTTP client is not connected")

        try:
            response = await self._client.post(
                DEVICE_CONFIG_PATH,
                json={"voucher": credential},
            )
        except httpx.HTTPError as e:
            raise ExternalServiceException(
                "platform", "device config request failed", str(e)
            ) from e

        if response.status_code == 404:
            logger.info(f"No device registered for voucher {credential}")
            return None
        if response.status_code != 200:
            raise ExternalServiceException(
                "platform",
                f"device config returned HTTP {response.status_code}",
                response.text,
            )

        body = _json_body(response, "device config")
        if body.get("code") != 200:
            logger.info(
                f"Device lookup rejected for voucher {credential}: "
                f"code={body.get('code')}, message={body.get('message')}"
            )
            return None

        data = body.get("data")
        device = DeviceIdentity.from_platform(data if isinstance(data, dict) else {})
        if not device.id:
            logger.info(f"Platform returned no device for voucher {credential}")
            return None

        self._cache[credential] = device
        logger.debug(f"Cached device {device.id} for voucher {credential}")
        return device

    async def invalidate_credential(self, credential: str) -> None:
        if self._cache.pop(credential, None) is not None:
            logger.debug(f"Device cache cleared for voucher {credential}")

    def invalidate_device(self, device_id: str) -> List[str]:
        """
        Drop every cached credential that maps to a device.

        Returns:
            The credentials that were removed.
        """
        removed = [
            credential for credential, device in self._cache.items()
            if device.id == device_id
        ]
        for credential in removed:
            del self._cache[credential]
        if removed:
            logger.debug(f"Device cache cleared for device {device_id}")
        return removed

    @property
    def cached_credentials(self) -> List[str]:
        return list(self._cache)

    # ==================== Publishing ====================

    async def publish_status(self, device_id: str, status: DeviceStatus) -> None:
        logger.debug(f"Sending device status {status.value} for {device_id}")
        self.publisher.publish(STATUS_TOPIC.format(device_id=device_id), status.value)

    async def publish_telemetry(
        self,
        device_id: str,
        bundle: Mapping[str, Any],
    ) -> None:
        values_json = json.dumps(dict(bundle))
        message = {
            "device_id": device_id,
            "values": base64.b64encode(values_json.encode("utf-8")).decode("ascii"),
        }
        self.publisher.publish(TELEMETRY_TOPIC, json.dumps(message))
        logger.debug(f"Telemetry sent for {device_id}: {values_json}")

    # ==================== Heartbeat ====================

    async def send_heartbeat(self, service_identifier: str) -> None:
        """
        Send the plugin heartbeat.

        Raises:
            ExternalServiceException: If the platform is unreachable or
                answers with a non-200 code.
        """
        if self._client is None:
            raise ExternalServiceException("platform", "HTTP client is not connected")

        try:
            response = await self._client.post(
                HEARTBEAT_PATH,
                json={"service_identifier": service_identifier},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceException("platform", "heartbeat failed", str(e)) from e

        body = _json_body(response, "heartbeat")
        if body.get("code") != 200:
            raise ExternalServiceException(
                "platform",
                f"heartbeat rejected: code={body.get('code')}, message={body.get('message')}",
            )
