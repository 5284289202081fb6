__version__ = "1.4.0"

# Topic templates; {prefix} always ends with "/"
DEVICE_STATE_TOPIC = "{prefix}state/{mac}"
GATEWAY_STATE_TOPIC = "{prefix}gateway/state"
DISCOVERY_CONFIG_TOPIC = "{discovery_prefix}/sensor/{object_id}/config"

DEFAULT_TOPIC_PREFIX = "/blegateways/aprilbrother/device/"
DEFAULT_DISCOVERY_PREFIX = "homeassistant"
DEFAULT_GATEWAY_NAME = "April Brother BLE Gateway"
DEFAULT_DISCOVERY_SECS = 60.0
DISCOVERY_EXPIRE_AFTER = 300

# type(1) + mac(6) + rssi(1)
MIN_FRAME_LENGTH = 8

ADVERTISING_TYPE_DESCRIPTIONS = {
    0: "Connectable undirected advertisement",
    1: "Connectable directed advertisement",
    2: "Scannable undirected advertisement",
    3: "Non-Connectable undirected advertisement",
    4: "Scan Response",
}
UNKNOWN_ADVERTISING_TYPE = "Unknown advertising type"
