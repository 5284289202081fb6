from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from bleproxy.core.constants import ADVERTISING_TYPE_DESCRIPTIONS, UNKNOWN_ADVERTISING_TYPE
from bleproxy.core.envelope import GatewayEnvelope
from bleproxy.core.frame import DeviceAdvertisement
from bleproxy.core.utils import iso_timestamp


@dataclass(frozen=True)
class OutboundPayload:
    mac_address: str
    rssi: int
    advertising_type_code: int
    advertising_type_description: str
    advertisement_data_hex: str
    last_seen_timestamp: str
    gateway_mac: Optional[str] = None
    gateway_ip: Optional[str] = None

    @property
    def normalized_mac(self) -> str:
        return self.mac_address.replace(":", "").upper()

    def to_json(self) -> Dict[str, Any]:
        doc = {
            "mac_address": self.mac_address,
            "rssi": self.rssi,
            "advertising_type_code": self.advertising_type_code,
            "advertising_type_description": self.advertising_type_description,
            "advertisement_data_hex": self.advertisement_data_hex,
            "last_seen_timestamp": self.last_seen_timestamp,
        }
        if self.gateway_mac:
            doc["gateway_mac"] = self.gateway_mac
        if self.gateway_ip:
            doc["gateway_ip"] = self.gateway_ip
        return doc


def describe_advertising_type(code: int) -> str:
    # unmapped codes (newer firmware) degrade instead of failing
    return ADVERTISING_TYPE_DESCRIPTIONS.get(code, UNKNOWN_ADVERTISING_TYPE)


def format_timestamp(now: datetime) -> str:
    return iso_timestamp(now)


def build_payload(advertisement: DeviceAdvertisement, gateway: GatewayEnvelope, now: datetime) -> OutboundPayload:
    """Merge one decoded advertisement with gateway metadata.

    `now` is the bridge's clock, not the gateway's: gateway time formats
    differ between firmware and connectivity modes.
    """
    return OutboundPayload(
        mac_address=advertisement.mac_address,
        rssi=advertisement.rssi,
        advertising_type_code=advertisement.advertising_type_code,
        advertising_type_description=describe_advertising_type(advertisement.advertising_type_code),
        advertisement_data_hex=advertisement.advertisement_data_hex,
        last_seen_timestamp=format_timestamp(now),
        gateway_mac=gateway.mac if isinstance(gateway.mac, str) and gateway.mac else None,
        gateway_ip=gateway.ip if isinstance(gateway.ip, str) and gateway.ip else None,
    )
