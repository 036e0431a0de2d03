"""
SANTAK-RTU Connector - TCP plugin for SANTAK UPS devices.

Handles device registration, the WA/Q6 poll cycle and telemetry
publishing to the IoT platform.
"""
from .config import ConnectorSettings, get_settings, load_settings
from .main import ConnectorServer

__all__ = [
    "ConnectorSettings",
    "get_settings",
    "load_settings",
    "ConnectorServer",
]
__version__ = "0.1.0"
