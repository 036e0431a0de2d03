"""
Configuration for the SANTAK-RTU connector.

Provides settings for the device-facing TCP server, the platform
integration (HTTP API and MQTT broker) and logging. Values come from
a YAML config file, with environment variables taking precedence.
"""
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, TypeVar, Union

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SectionT = TypeVar("SectionT", bound=BaseSettings)


class ServerSettings(BaseSettings):
    """Device-facing TCP server and plugin HTTP API configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SANTAK_SERVER_",
        env_file=".env",
        extra="ignore",
    )

    host: str = Field(default="0.0.0.0", description="TCP bind address for UPS devices")
    port: int = Field(default=9100, description="TCP port for UPS devices")
    http_host: str = Field(default="0.0.0.0", description="Plugin HTTP API bind address")
    http_port: int = Field(default=9101, description="Plugin HTTP API port")
    max_connections: int = Field(default=1000, description="Maximum concurrent device connections")
    backlog: int = Field(default=100, description="Connection backlog size")
    idle_timeout: float = Field(default=10.0, description="Seconds without data before a device is offline")
    read_size: int = Field(default=512, description="Maximum bytes per receive call")
    write_timeout: float = Field(default=10.0, description="Reply write timeout in seconds")


class PlatformSettings(BaseSettings):
    """IoT platform configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SANTAK_PLATFORM_",
        env_file=".env",
        extra="ignore",
    )

    url: str = Field(default="http://127.0.0.1:9999", description="Platform API base URL")
    mqtt_broker: str = Field(default="127.0.0.1:1883", description="MQTT broker host:port")
    mqtt_username: Optional[str] = Field(default=None, description="MQTT username")
    mqtt_password: Optional[str] = Field(default=None, description="MQTT password")
    service_identifier: str = Field(default="SANTAK-RTU", description="Plugin service identifier")
    request_timeout: float = Field(default=10.0, description="HTTP request timeout")
    heartbeat_interval: float = Field(default=30.0, description="Plugin heartbeat interval in seconds")
    mqtt_connect_timeout: float = Field(default=10.0, description="MQTT connect timeout in seconds")

    @property
    def mqtt_host(self) -> str:
        """Broker host part of `mqtt_broker`."""
        return self._split_broker()[0]

    @property
    def mqtt_port(self) -> int:
        """Broker port part of `mqtt_broker` (1883 when omitted)."""
        return self._split_broker()[1]

    def _split_broker(self) -> Tuple[str, int]:
        # Accept "tcp://host:port" as well as "host:port"
        broker = self.mqtt_broker.split("://", 1)[-1]
        host, _, port = broker.rpartition(":")
        if not host:
            return port, 1883
        return host, int(port)


class LogSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SANTAK_LOG_",
        env_file=".env",
        extra="ignore",
    )

    level: str = Field(default="INFO")
    file_path: Path = Field(default=Path("logs/santak-rtu.log"))
    max_size: int = Field(default=100, description="Size of one log file in MB before rotation")
    max_backups: int = Field(default=10, description="Number of rotated log files to keep")
    compress: bool = Field(default=False, description="Gzip rotated log files")


class ConnectorSettings(BaseSettings):
    """Main configuration for the connector."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="SANTAK-RTU Connector")

    # Sub-settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    platform: PlatformSettings = Field(default_factory=PlatformSettings)
    log: LogSettings = Field(default_factory=LogSettings)


def _load_section(section_cls: Type[SectionT], values: Optional[Dict[str, Any]]) -> SectionT:
    """Build a section from file values, letting environment variables win."""
    from_env = section_cls()
    overrides = from_env.model_dump(include=from_env.model_fields_set)
    return section_cls(**{**(values or {}), **overrides})


def load_settings(path: Union[str, Path]) -> ConnectorSettings:
    """
    Load connector settings from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        Settings with environment variables applied over file values.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the file is not a YAML mapping.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")

    return ConnectorSettings(
        server=_load_section(ServerSettings, data.get("server")),
        platform=_load_section(PlatformSettings, data.get("platform")),
        log=_load_section(LogSettings, data.get("log")),
    )


@lru_cache()
def get_settings() -> ConnectorSettings:
    """
    Get cached connector settings.

    Uses LRU cache to avoid re-reading environment variables on every access.
    """
    return ConnectorSettings()
