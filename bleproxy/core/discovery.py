"""Home Assistant MQTT discovery for tracked tokens and the gateway.

Each tracked token gets an RSSI and a Last Seen sensor fed from its device
state topic; the gateway gets one sensor per field of its state message.
Configs are published retained, once per process, and retried on the next
discovery pass if the broker was unavailable.
"""
import logging
from typing import Any, Dict, List, Tuple

from bleproxy.core.constants import DISCOVERY_CONFIG_TOPIC, DISCOVERY_EXPIRE_AFTER
from bleproxy.core.errors import PublishError
from bleproxy.core.utils import format_mac, slugify

TOKEN_MODEL = "April Brother BLE Gateway v4 Token"
GATEWAY_MODEL = "April Brother BLE Gateway v4"
MANUFACTURER = "April Brother"

# (object suffix, display suffix, value template, device class)
GATEWAY_SENSORS = [
    ("version", "Version", "{{ value_json.version }}", None),
    ("ip", "IP", "{{ value_json.ip }}", None),
    ("mac", "MAC", "{{ value_json.mac }}", None),
    ("message_id", "Message ID", "{{ value_json.messageId }}", None),
    ("time", "Time", "{{ value_json.time }}", None),
    ("last_ping", "Last Ping", "{{ value_json.processed_timestamp }}", "timestamp"),
]


def token_device_object(mac: str, name: str) -> Dict[str, Any]:
    return {
        "identifiers": [f"ble_token_{mac.lower()}"],
        "name": name,
        "model": TOKEN_MODEL,
        "manufacturer": MANUFACTURER,
    }


def gateway_device_object(gateway_name: str) -> Dict[str, Any]:
    return {
        "identifiers": ["ble_gateway"],
        "name": gateway_name,
        "model": GATEWAY_MODEL,
        "manufacturer": MANUFACTURER,
    }


def device_discovery_configs(mac: str, name: str, router, discovery_prefix: str) -> List[Tuple[str, dict]]:
    """RSSI + Last Seen sensor configs for one token, as (topic, config) pairs."""
    mac_colons = format_mac(mac)
    mac_id = mac_colons.replace(":", "").lower()
    device = token_device_object(mac_id, name)
    state_topic = router.device_topic(mac_colons)
    slug = slugify(name)
    rssi = {
        "name": f"{name} RSSI",
        "unique_id": f"ble_token_{mac_id}_rssi",
        "state_topic": state_topic,
        "value_template": "{{ value_json.rssi | default(0) }}",
        "unit_of_measurement": "dBm",
        "device_class": "signal_strength",
        "expire_after": DISCOVERY_EXPIRE_AFTER,
        "device": device,
    }
    last_seen = {
        "name": f"{name} Last Seen",
        "unique_id": f"ble_token_{mac_id}_last_seen",
        "state_topic": state_topic,
        "value_template": "{{ value_json.last_seen_timestamp }}",
        "device_class": "timestamp",
        "expire_after": DISCOVERY_EXPIRE_AFTER,
        "device": device,
    }
    return [
        (DISCOVERY_CONFIG_TOPIC.format(discovery_prefix=discovery_prefix, object_id=f"{slug}_rssi"), rssi),
        (DISCOVERY_CONFIG_TOPIC.format(discovery_prefix=discovery_prefix, object_id=f"{slug}_last_seen"), last_seen),
    ]


def gateway_discovery_configs(gateway_name: str, router, discovery_prefix: str) -> List[Tuple[str, dict]]:
    device = gateway_device_object(gateway_name)
    slug = slugify(gateway_name)
    out = []
    for key, label, template, device_class in GATEWAY_SENSORS:
        cfg = {
            "name": f"{gateway_name} {label}",
            "unique_id": f"ble_gateway_{key}",
            "state_topic": router.gateway_topic(),
            "value_template": template,
            "device": device,
        }
        if device_class:
            cfg["device_class"] = device_class
        topic = DISCOVERY_CONFIG_TOPIC.format(discovery_prefix=discovery_prefix, object_id=f"{slug}_{key}")
        out.append((topic, cfg))
    return out


class DiscoveryPublisher:
    def __init__(self, router, ha_cfg):
        self.router = router
        self.cfg = ha_cfg
        self._published_devices = set()
        self._gateway_published = False

    def publish_device(self, mac: str, name: str) -> bool:
        """Publish a token's configs unless already done. Returns True if published now."""
        if mac in self._published_devices:
            return False
        for topic, cfg in device_discovery_configs(mac, name, self.router, self.cfg.discovery_topic_prefix):
            self.router.publish_json(topic, cfg, retain=True)
        self._published_devices.add(mac)
        logging.info(f"[discovery] published HA discovery for {name} ({format_mac(mac)})")
        return True

    def publish_gateway(self) -> bool:
        if self._gateway_published:
            return False
        for topic, cfg in gateway_discovery_configs(self.cfg.gateway_name, self.router, self.cfg.discovery_topic_prefix):
            self.router.publish_json(topic, cfg, retain=True)
        self._gateway_published = True
        logging.info(f"[discovery] published HA discovery for gateway '{self.cfg.gateway_name}'")
        return True

    def publish_all(self) -> int:
        """Publish everything not yet published; returns how many entities were new."""
        if not self.cfg.enabled:
            logging.debug("[discovery] Home Assistant integration disabled; skipping")
            return 0
        if not self.router.is_connected:
            logging.warning("[discovery] MQTT not connected; deferring discovery messages")
            return 0
        count = 0
        if not self.cfg.devices:
            logging.warning("[discovery] no Home Assistant BLE devices configured")
        for mac, name in self.cfg.devices.items():
            try:
                if self.publish_device(mac, name):
                    count += 1
            except PublishError as e:
                logging.error(f"[discovery] failed to publish discovery for {mac}: {e}")
        try:
            if self.publish_gateway():
                count += 1
        except PublishError as e:
            logging.error(f"[discovery] failed to publish gateway discovery: {e}")
        return count

    def reset(self):
        self._published_devices.clear()
        self._gateway_published = False

    @property
    def published_devices(self):
        return set(self._published_devices)
