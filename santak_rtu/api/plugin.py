"""
Plugin API endpoints called by the platform.

Serves the device voucher forms, handles device disconnect requests,
configuration notifications and service access point device listing.
"""
import json
import logging
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..platform.gateway import DeviceStatus
from ..platform.platform_client import PlatformClient
from .dependencies import get_platform_client
from .schemas import (
    DeviceDisconnectRequest,
    DeviceListData,
    NotificationRequest,
    PluginResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Plugin"])

PROTOCOL_TYPE = "SANTAK-RTU"
DEVICE_TYPE = "1"

FORMS_DIR = Path(__file__).resolve().parent.parent / "forms"

# Form type -> bundled form file; None means the plugin has no such form
FORM_FILES = {
    "CFG": None,
    "VCR": "form_voucher.json",
    "VCRT": "form_voucher_type.json",
    "SVCR": None,
}


def read_form(name: str) -> Any:
    """Load a bundled form definition."""
    with (FORMS_DIR / name).open("r", encoding="utf-8") as f:
        return json.load(f)


def _parse_json_object(raw: str, what: str) -> dict:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse {what}: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {what}: {e}",
        )
    if not isinstance(value, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {what}: expected a JSON object",
        )
    return value


@router.get(
    "/form/config",
    response_model=PluginResponse,
    summary="Get a configuration form",
)
async def get_form_config(
    protocol_type: str = Query(...),
    device_type: str = Query(...),
    form_type: str = Query(...),
) -> PluginResponse:
    """Return the form the platform renders for device/service configuration."""
    logger.info(
        f"Form config requested: protocol_type={protocol_type}, "
        f"device_type={device_type}, form_type={form_type}"
    )

    if protocol_type != PROTOCOL_TYPE or device_type != DEVICE_TYPE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported protocol/device type: {protocol_type},{device_type}",
        )

    if form_type not in FORM_FILES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported form type: {form_type}",
        )

    form_file = FORM_FILES[form_type]
    return PluginResponse(data=read_form(form_file) if form_file else None)


@router.post(
    "/device/disconnect",
    response_model=PluginResponse,
    summary="Disconnect a device",
)
async def disconnect_device(
    request: DeviceDisconnectRequest,
    client: PlatformClient = Depends(get_platform_client),
) -> PluginResponse:
    """Drop the cached identity of a device and mark it offline."""
    logger.info(f"Disconnect requested for device {request.device_id}")

    client.invalidate_device(request.device_id)
    await client.publish_status(request.device_id, DeviceStatus.OFFLINE)

    return PluginResponse()


@router.post(
    "/notify/event",
    response_model=PluginResponse,
    summary="Receive a platform notification",
)
async def notify_event(
    request: NotificationRequest,
    client: PlatformClient = Depends(get_platform_client),
) -> PluginResponse:
    """Handle service or device configuration change notifications."""
    logger.info(
        f"Notification received: type={request.message_type}, "
        f"message={request.message}"
    )
    payload = _parse_json_object(request.message, "notification message")

    if request.message_type == "1":
        logger.info("Service configuration changed")
    elif request.message_type == "2":
        device_id: Optional[str] = payload.get("device_id")
        logger.info(f"Device configuration changed: {device_id or 'unknown device'}")
        if device_id:
            client.invalidate_device(device_id)
    else:
        logger.warning(f"Unknown notification type: {request.message_type}")

    return PluginResponse()


@router.get(
    "/plugin/device/list",
    response_model=PluginResponse,
    summary="List devices behind a service access point",
)
async def get_device_list(
    voucher: str = Query(...),
    service_identifier: str = Query(PROTOCOL_TYPE),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1),
) -> PluginResponse:
    """SANTAK devices register themselves, so access points list no devices."""
    logger.info(
        f"Device list requested: service_identifier={service_identifier}, "
        f"page={page}, page_size={page_size}"
    )
    _parse_json_object(voucher, "voucher")

    return PluginResponse(data=DeviceListData().model_dump())
