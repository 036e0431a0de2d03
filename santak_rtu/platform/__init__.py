"""
Platform integration: gateway interface, HTTP/MQTT client.
"""
from .gateway import DeviceIdentity, DeviceStatus, PlatformGateway
from .mqtt_publisher import MQTTPublisher
from .platform_client import PlatformClient

__all__ = [
    "DeviceIdentity",
    "DeviceStatus",
    "PlatformGateway",
    "MQTTPublisher",
    "PlatformClient",
]
