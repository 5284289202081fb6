"""Decoder for the raw advertisement frames carried in a gateway report.

Frame layout (as sent by the April Brother gateway):

    byte 0      advertising type code
    bytes 1-6   device MAC, most significant byte first
    byte 7      RSSI as an unsigned byte; dBm = value - 256
    bytes 8..   advertisement data (may be empty)
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from bleproxy.core.constants import MIN_FRAME_LENGTH
from bleproxy.core.errors import FrameDecodeError, FrameTooShort


@dataclass(frozen=True)
class DeviceAdvertisement:
    advertising_type_code: int
    mac_bytes: bytes
    rssi: int                # always in [-256, -1]
    payload: bytes = b""

    @property
    def mac_address(self) -> str:
        return ":".join(f"{b:02X}" for b in self.mac_bytes)

    @property
    def advertisement_data_hex(self) -> str:
        return self.payload.hex().upper()

    def to_bytes(self) -> bytes:
        return bytes([self.advertising_type_code]) + self.mac_bytes + bytes([self.rssi + 256]) + self.payload


@dataclass
class FrameError:
    index: int
    error: str
    length: int


@dataclass
class DecodeResult:
    advertisements: List[DeviceAdvertisement] = field(default_factory=list)
    errors: List[FrameError] = field(default_factory=list)
    total: int = 0

    @property
    def success_count(self) -> int:
        return len(self.advertisements)

    @property
    def error_count(self) -> int:
        return len(self.errors)


def decode_frame(frame: bytes) -> DeviceAdvertisement:
    if len(frame) < MIN_FRAME_LENGTH:
        raise FrameTooShort(len(frame))
    frame = bytes(frame)
    return DeviceAdvertisement(
        advertising_type_code=frame[0],
        mac_bytes=frame[1:7],
        rssi=frame[7] - 256,
        payload=frame[8:],
    )


def decode_frames(frames: Iterable[Any]) -> DecodeResult:
    """Decode every frame in scan order. Bad frames are recorded, not raised."""
    result = DecodeResult()
    for idx, raw in enumerate(frames):
        result.total += 1
        if not isinstance(raw, (bytes, bytearray, memoryview)):
            err = FrameError(index=idx, error=f"frame must be a byte buffer, got {type(raw).__name__}", length=0)
            result.errors.append(err)
            logging.warning(f"[frame] skipping frame {idx}: {err.error}")
            continue
        try:
            adv = decode_frame(raw)
        except FrameDecodeError as e:
            result.errors.append(FrameError(index=idx, error=str(e), length=len(raw)))
            logging.warning(f"[frame] skipping frame {idx}: {e}")
            continue
        result.advertisements.append(adv)
        logging.debug(f"[frame] decoded frame {idx} mac={adv.mac_address} rssi={adv.rssi} type={adv.advertising_type_code}")
    return result


def frame_statistics(advertisements: List[DeviceAdvertisement]) -> Dict[str, Any]:
    """Summary of one decoded batch, logged at debug level by the bridge."""
    stats: Dict[str, Any] = {
        "total": len(advertisements),
        "advertising_types": {},
        "rssi": {"min": None, "max": None, "average": None},
        "unique_devices": 0,
        "average_data_length": 0.0,
    }
    if not advertisements:
        return stats
    for adv in advertisements:
        code = adv.advertising_type_code
        stats["advertising_types"][code] = stats["advertising_types"].get(code, 0) + 1
    rssis = [a.rssi for a in advertisements]
    stats["rssi"] = {
        "min": min(rssis),
        "max": max(rssis),
        "average": round(sum(rssis) / len(rssis), 2),
    }
    stats["unique_devices"] = len({a.mac_bytes for a in advertisements})
    stats["average_data_length"] = sum(len(a.payload) for a in advertisements) / len(advertisements)
    return stats
