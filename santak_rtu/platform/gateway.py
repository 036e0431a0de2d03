"""
Platform gateway interface consumed by device sessions.

Sessions only talk to the platform through this interface: credential
lookup and invalidation, status publishing and telemetry publishing.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class DeviceStatus(str, Enum):
    """Device status values as published to the platform."""
    ONLINE = "1"
    OFFLINE = "0"


@dataclass
class DeviceIdentity:
    """Device record returned by a successful credential lookup."""
    id: str
    voucher: str = ""
    device_number: Optional[str] = None
    name: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_platform(cls, data: Mapping[str, Any]) -> "DeviceIdentity":
        """Build an identity from the platform's device config payload."""
        return cls(
            id=str(data.get("id") or ""),
            voucher=data.get("voucher") or "",
            device_number=data.get("device_number"),
            name=data.get("name"),
            raw=dict(data),
        )


class PlatformGateway(ABC):
    """
    Narrow platform interface used by the session state machine.

    Implementations own the credential -> identity cache and must be
    safe to call from many concurrent sessions.
    """

    @abstractmethod
    async def resolve_device_by_credential(
        self,
        credential: str,
    ) -> Optional[DeviceIdentity]:
        """
        Look up the device registered under a credential.

        Returns:
            The device identity, or None if no device matches.

        Raises:
            ExternalServiceException: If the platform cannot be reached.
        """

    @abstractmethod
    async def invalidate_credential(self, credential: str) -> None:
        """Drop any cached identity for a credential. Idempotent."""

    @abstractmethod
    async def publish_status(self, device_id: str, status: DeviceStatus) -> None:
        """
        Publish a device online/offline status.

        Raises:
            ExternalServiceException: If the publish fails.
        """

    @abstractmethod
    async def publish_telemetry(
        self,
        device_id: str,
        bundle: Mapping[str, Any],
    ) -> None:
        """
        Publish one telemetry bundle for a device.

        Raises:
            ExternalServiceException: If the publish fails.
        """
