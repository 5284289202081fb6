import time
from typing import Dict, List

from bleproxy.core.payload import OutboundPayload


class DeviceStateCache:
    """Latest payload per device, keyed by normalized MAC (no colons, uppercase).

    Entries are overwritten on every frame and never removed; the key space is
    bounded by the set of devices the gateway can hear.
    """

    def __init__(self):
        self._store: Dict[str, dict] = {}

    def upsert(self, payload: OutboundPayload) -> str:
        mac = payload.normalized_mac
        now = time.time()
        entry = self._store.get(mac, {"first_seen": now, "updates": 0})
        entry["payload"] = payload
        entry["last_seen"] = now
        entry["updates"] += 1
        self._store[mac] = entry
        return mac

    def get(self, mac: str):
        entry = self._store.get(mac)
        return entry["payload"] if entry else None

    def payloads(self) -> List[OutboundPayload]:
        return [e["payload"] for e in self._store.values()]

    def macs(self) -> List[str]:
        return list(self._store.keys())

    def snapshot(self) -> Dict[str, dict]:
        # JSON-friendly view for the status endpoint
        out = {}
        for k, v in self._store.items():
            out[k] = {
                "first_seen": v["first_seen"],
                "last_seen": v["last_seen"],
                "updates": v["updates"],
                "rssi": v["payload"].rssi,
            }
        return out

    def __len__(self):
        return len(self._store)

    def __contains__(self, mac):
        return mac in self._store
