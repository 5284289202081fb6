import logging
import os
import re
from typing import Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError

from bleproxy.config.broker import env_bool, load_mqtt_env_overrides
from bleproxy.core.constants import (
    DEFAULT_DISCOVERY_PREFIX, DEFAULT_DISCOVERY_SECS, DEFAULT_GATEWAY_NAME, DEFAULT_TOPIC_PREFIX
)
from bleproxy.core.errors import ConfigError
from bleproxy.core.utils import normalize_mac

_HA_DEVICE_ENV = re.compile(r"^HA_BLE_DEVICE_(\d+)$")


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(8000, ge=1, le=65535)


class MQTTConfig(BaseModel):
    host: str = "localhost"
    port: int = Field(1883, ge=1, le=65535)
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = "bleproxy"
    topic_prefix: str = DEFAULT_TOPIC_PREFIX
    qos: int = Field(1, ge=0, le=2)
    keepalive: int = 60
    tls: bool = False


class PublishConfig(BaseModel):
    # 0 disables throttling: every report is published as it arrives
    interval_seconds: float = Field(0, ge=0)


class LoggingConfig(BaseModel):
    level: str = "info"


class HomeAssistantConfig(BaseModel):
    enabled: bool = False
    discovery_topic_prefix: str = DEFAULT_DISCOVERY_PREFIX
    gateway_name: str = DEFAULT_GATEWAY_NAME
    # normalized MAC -> friendly name
    devices: Dict[str, str] = Field(default_factory=dict)
    discovery_interval_seconds: float = Field(DEFAULT_DISCOVERY_SECS, gt=0)


class Settings(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    mqtt: MQTTConfig = Field(default_factory=MQTTConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    home_assistant: HomeAssistantConfig = Field(default_factory=HomeAssistantConfig)

    @property
    def tracked_macs(self) -> List[str]:
        return sorted(self.home_assistant.devices.keys())


def parse_device_entry(value: str) -> Optional[Tuple[str, str]]:
    """Parse "<mac>,<friendly name>"; returns None when malformed."""
    if not value or "," not in value:
        return None
    mac, name = value.split(",", 1)
    name = name.strip()
    if not name:
        return None
    try:
        return normalize_mac(mac), name
    except ValueError:
        return None


def load_ha_devices_from_env(environ=None) -> Dict[str, str]:
    environ = os.environ if environ is None else environ
    devices = {}
    keys = [k for k in environ if _HA_DEVICE_ENV.match(k)]
    for key in sorted(keys, key=lambda k: int(_HA_DEVICE_ENV.match(k).group(1))):
        entry = parse_device_entry(environ[key])
        if entry is None:
            logging.warning(f"[config] skipping malformed {key}={environ[key]!r} (expected '<mac>,<name>')")
            continue
        devices[entry[0]] = entry[1]
    return devices


def _section(data: dict, name: str) -> dict:
    val = data.get(name)
    if val is None:
        val = {}
    if not isinstance(val, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping, got {type(val).__name__}")
    data[name] = val
    return val


def _env_number(name: str, cast):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def load_config(path: str = None) -> Settings:
    """Load settings from YAML (optional) and apply environment overrides.

    Environment variables win over the file so container deployments can
    keep using the original variable names.
    """
    path = path or os.getenv("BLEPROXY_CONFIG")
    data = {}
    if path:
        if not os.path.exists(path):
            raise FileNotFoundError(f"Config not found: {path}")
        with open(path, "r") as fh:
            try:
                data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping, got {type(data).__name__}")

    server = _section(data, "server")
    mqtt = _section(data, "mqtt")
    publish = _section(data, "publish")
    log_cfg = _section(data, "logging")
    ha = _section(data, "home_assistant")

    if os.getenv("SERVER_HOST"):
        server["host"] = os.getenv("SERVER_HOST")
    port = _env_number("SERVER_PORT", int)
    if port is not None:
        server["port"] = port

    mqtt.update(load_mqtt_env_overrides())

    interval = _env_number("MQTT_PUBLISH_INTERVAL_SECONDS", float)
    if interval is not None:
        publish["interval_seconds"] = interval

    if os.getenv("LOG_LEVEL"):
        log_cfg["level"] = os.getenv("LOG_LEVEL")

    if os.getenv("HA_ENABLED"):
        ha["enabled"] = env_bool(os.getenv("HA_ENABLED"))
    if os.getenv("HA_DISCOVERY_TOPIC_PREFIX"):
        ha["discovery_topic_prefix"] = os.getenv("HA_DISCOVERY_TOPIC_PREFIX")
    if os.getenv("HA_GATEWAY_NAME"):
        ha["gateway_name"] = os.getenv("HA_GATEWAY_NAME")

    devices = {}
    raw_devices = ha.get("devices") or {}
    if not isinstance(raw_devices, dict):
        raise ConfigError("home_assistant.devices must be a mapping of MAC -> name")
    for mac, name in raw_devices.items():
        try:
            devices[normalize_mac(str(mac))] = str(name)
        except ValueError as e:
            raise ConfigError(f"home_assistant.devices: {e}") from e
    devices.update(load_ha_devices_from_env())
    ha["devices"] = devices

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def config_warnings(settings: Settings) -> List[str]:
    warnings = []
    if settings.mqtt.host == "localhost" and not os.getenv("MQTT_BROKER_URL"):
        warnings.append("MQTT broker not configured, using default: mqtt://localhost:1883")
    if settings.home_assistant.enabled and not settings.home_assistant.devices:
        warnings.append("HA_ENABLED is true but no HA_BLE_DEVICE_X devices are configured")
    if settings.publish.interval_seconds > 0 and not settings.tracked_macs:
        warnings.append("Publish interval set but no tracked devices; publication is purely timer-driven")
    return warnings
