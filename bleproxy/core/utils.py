import re
from datetime import datetime, timezone

_MAC_RE = re.compile(r"^[0-9A-F]{12}$")


def normalize_mac(mac: str) -> str:
    """Strip colons/dashes and upper-case a MAC. Raises ValueError if it isn't 12 hex digits."""
    if not isinstance(mac, str) or not mac.strip():
        raise ValueError("MAC address must be a non-empty string")
    norm = mac.strip().replace(":", "").replace("-", "").upper()
    if not _MAC_RE.match(norm):
        raise ValueError(f"Invalid MAC address format: {mac}. Expected 12 hex characters.")
    return norm


def format_mac(mac: str) -> str:
    """Return the colon-separated uppercase form (AA:BB:CC:DD:EE:FF)."""
    norm = normalize_mac(mac)
    return ":".join(norm[i:i + 2] for i in range(0, 12, 2))


def slugify(text: str) -> str:
    if not text or not isinstance(text, str):
        return ""
    s = text.strip().lower()
    s = re.sub(r"[\s.]+", "_", s)
    s = re.sub(r"[&/\\#,+()$~%'\":*?<>{}]", "", s)
    s = re.sub(r"_+", "_", s)
    return s.strip("_")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(now: datetime) -> str:
    """ISO-8601 UTC with milliseconds and a Z suffix, e.g. 2023-10-27T12:34:56.789Z."""
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
