import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from bleproxy.core.errors import EnvelopeMalformed
from bleproxy.core.utils import iso_timestamp


@dataclass
class GatewayEnvelope:
    firmware_version: Optional[str] = None
    message_id: Optional[int] = None
    boot_time: Optional[Union[int, str]] = None   # gateway-defined unit, passed through
    ip: Optional[str] = None
    mac: Optional[str] = None
    wifi_rssi: Optional[int] = None               # firmware >= 1.5.0
    sim_iccid: Optional[str] = None               # 4G models, firmware >= 1.5.3
    raw_device_frames: List[Any] = field(default_factory=list)


def parse_envelope(decoded: Mapping[str, Any]) -> GatewayEnvelope:
    """Pull gateway metadata and the device frame list out of a decoded report.

    Frames are not inspected here. A missing `devices` key is an
    envelope-only heartbeat and yields an empty frame list; a `devices`
    value that is not a list is the one hard failure.
    """
    if not isinstance(decoded, Mapping):
        raise EnvelopeMalformed(f"gateway data must be a map, got {type(decoded).__name__}")

    devices = decoded.get("devices")
    if devices is None:
        logging.debug("[envelope] no devices array in gateway data")
        frames = []
    elif isinstance(devices, (list, tuple)):
        frames = list(devices)
    else:
        raise EnvelopeMalformed(f"devices must be an array, got {type(devices).__name__}")

    return GatewayEnvelope(
        firmware_version=decoded.get("v"),
        message_id=decoded.get("mid"),
        boot_time=decoded.get("time"),
        ip=decoded.get("ip"),
        mac=decoded.get("mac"),
        wifi_rssi=decoded.get("rssi"),
        sim_iccid=decoded.get("iccid"),
        raw_device_frames=frames,
    )


def validate_envelope(envelope: GatewayEnvelope) -> List[str]:
    warnings = []
    if not envelope.firmware_version:
        warnings.append("Missing firmware version (v)")
    elif not isinstance(envelope.firmware_version, str):
        warnings.append("Version should be a string")
    if envelope.message_id is None:
        warnings.append("Missing message ID (mid)")
    elif not isinstance(envelope.message_id, int) or isinstance(envelope.message_id, bool):
        warnings.append("Message ID should be a number")
    if not envelope.ip:
        warnings.append("Missing gateway IP address")
    if not envelope.mac:
        warnings.append("Missing gateway MAC address")
    return warnings


def gateway_status_document(envelope: GatewayEnvelope, now: datetime) -> Dict[str, Any]:
    """Gateway state message; keys match the HA gateway sensor templates."""
    doc: Dict[str, Any] = {}
    if envelope.firmware_version:
        doc["version"] = envelope.firmware_version
    if envelope.message_id is not None:
        doc["messageId"] = envelope.message_id
    if envelope.boot_time is not None:
        doc["time"] = envelope.boot_time
    if envelope.ip:
        doc["ip"] = envelope.ip
    if envelope.mac:
        doc["mac"] = envelope.mac
    if envelope.wifi_rssi is not None:
        doc["rssi"] = envelope.wifi_rssi
    if envelope.sim_iccid is not None:
        doc["iccid"] = envelope.sim_iccid
    doc["processed_timestamp"] = iso_timestamp(now)
    return doc
