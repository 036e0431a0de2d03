"""
Pydantic schemas for the plugin HTTP API.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class PluginResponse(BaseModel):
    """Response envelope expected by the platform."""
    code: int = 200
    message: str = "success"
    data: Optional[Any] = None


class DeviceDisconnectRequest(BaseModel):
    """Platform request to take a device offline."""
    device_id: str = Field(..., min_length=1)


class NotificationRequest(BaseModel):
    """Platform notification about configuration changes."""
    message_type: str
    message: str = "{}"


class DeviceListData(BaseModel):
    """Devices behind a service access point."""
    list: List[Any] = Field(default_factory=list)
    total: int = 0
