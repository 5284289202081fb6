import os

import pytest

ENV_VARS = [
    "BLEPROXY_CONFIG", "SERVER_HOST", "SERVER_PORT",
    "MQTT_BROKER_URL", "MQTT_USERNAME", "MQTT_PASSWORD", "MQTT_TOPIC_PREFIX",
    "MQTT_QOS", "MQTT_RETAIN", "MQTT_CLIENT_ID", "MQTT_PUBLISH_INTERVAL_SECONDS",
    "LOG_LEVEL", "HA_ENABLED", "HA_DISCOVERY_TOPIC_PREFIX", "HA_GATEWAY_NAME",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # config loading reads the process environment; keep tests independent of the host
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("HA_BLE_DEVICE_"):
            monkeypatch.delenv(name, raising=False)
