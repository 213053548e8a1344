"""Configuration models for the application."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .models import DEFAULT_CAST_PORT, Endpoint
from .util import slugify

_LOGGER = logging.getLogger(__name__)

DEFAULT_APPLICATIONS = ["DefaultMediaReceiver", "YouTube"]

# -----------------------------------------------------------------------------
# Configuration Dataclasses
# -----------------------------------------------------------------------------


@dataclass
class DeviceConfig:
    """Settings for the cast device connection."""
    host: Optional[str] = None
    port: int = DEFAULT_CAST_PORT
    connect_timeout_seconds: float = 10.0
    reconnect_delay_seconds: float = 3.0
    request_timeout_seconds: float = 10.0

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def endpoint(self) -> Endpoint:
        if not self.host:
            raise ValueError("Device host is not configured")
        return Endpoint(host=self.host, port=int(self.port or DEFAULT_CAST_PORT))


@dataclass
class SenderConfig:
    """One logical sender and the applications it controls."""
    name: str
    applications: List[str] = field(default_factory=lambda: list(DEFAULT_APPLICATIONS))


@dataclass
class MqttConfig:
    """Settings for the MQTT client."""
    enabled: bool = False
    host: Optional[str] = None
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    topic_prefix: str = "cast"


@dataclass
class AppConfig:
    """General application settings."""
    name: str
    debug: bool = False


@dataclass
class Config:
    """Main configuration object."""
    app: AppConfig
    device: DeviceConfig = field(default_factory=DeviceConfig)
    senders: List[SenderConfig] = field(default_factory=list)
    mqtt: MqttConfig = field(default_factory=MqttConfig)

# -----------------------------------------------------------------------------
# Helper Function
# -----------------------------------------------------------------------------


def load_config_from_json(config_path: Path) -> Config:
    """Loads configuration from a JSON file and populates dataclasses."""

    # --- Step 1: Load raw JSON data ---
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_data = json.load(f)
    except FileNotFoundError:
        _LOGGER.critical("Configuration file not found at: %s", config_path)
        raise
    except json.JSONDecodeError as e:
        _LOGGER.critical("Error parsing configuration file: %s", e)
        raise

    return config_from_dict(raw_data)


def config_from_dict(raw_data: dict) -> Config:
    """Builds a Config from already-parsed JSON."""
    if not isinstance(raw_data, dict) or "app" not in raw_data:
        raise ValueError(
            "Configuration file must contain an 'app' section with a 'name'."
        )

    app_config = AppConfig(**raw_data.get("app", {}))
    device_config = DeviceConfig(**raw_data.get("device", {}))
    mqtt_config = MqttConfig(**raw_data.get("mqtt", {}))

    senders = [SenderConfig(**sender) for sender in raw_data.get("senders", [])]
    if not senders:
        senders = [SenderConfig(name="default")]

    names = [s.name for s in senders]
    if len(set(names)) != len(names):
        raise ValueError(f"Sender names must be unique: {names}")

    # Senders are keyed by slug
    ids = [slugify(name) for name in names]
    if len(set(ids)) != len(ids):
        raise ValueError(f"Sender names must differ after slugifying: {names} -> {ids}")

    # MQTT is on whenever a broker host is given
    if mqtt_config.host:
        mqtt_config.enabled = True

    return Config(
        app=app_config,
        device=device_config,
        senders=senders,
        mqtt=mqtt_config,
    )
