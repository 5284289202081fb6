import pytest

from bleproxy.config.broker import env_bool, parse_broker_url
from bleproxy.config.loader import (
    Settings, config_warnings, load_config, load_ha_devices_from_env, parse_device_entry
)
from bleproxy.core.errors import ConfigError

EXAMPLE = """
server:
  port: 9001
mqtt:
  host: broker.local
  topic_prefix: /gw/ab
  qos: 0
publish:
  interval_seconds: 15
logging:
  level: debug
home_assistant:
  enabled: true
  gateway_name: Garage Gateway
  devices:
    "12:34:56:78:9a:bc": Car Keys
"""


def write(tmp_path, text):
    p = tmp_path / "bleproxy.yaml"
    p.write_text(text)
    return str(p)


def test_defaults_without_file():
    s = load_config()
    assert isinstance(s, Settings)
    assert s.server.port == 8000
    assert s.mqtt.host == "localhost"
    assert s.mqtt.topic_prefix == "/blegateways/aprilbrother/device/"
    assert s.publish.interval_seconds == 0
    assert s.home_assistant.enabled is False
    assert s.home_assistant.discovery_topic_prefix == "homeassistant"
    assert s.tracked_macs == []


def test_load_yaml(tmp_path):
    s = load_config(write(tmp_path, EXAMPLE))
    assert s.server.port == 9001
    assert s.mqtt.host == "broker.local"
    assert s.mqtt.qos == 0
    assert s.publish.interval_seconds == 15
    assert s.logging.level == "debug"
    assert s.home_assistant.gateway_name == "Garage Gateway"
    assert s.home_assistant.devices == {"123456789ABC": "Car Keys"}
    assert s.tracked_macs == ["123456789ABC"]


def test_config_path_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("BLEPROXY_CONFIG", write(tmp_path, EXAMPLE))
    assert load_config().server.port == 9001


def test_env_overrides_file(tmp_path, monkeypatch):
    monkeypatch.setenv("SERVER_PORT", "8100")
    monkeypatch.setenv("MQTT_BROKER_URL", "mqtts://user:pw@mqtt.example.com")
    monkeypatch.setenv("MQTT_QOS", "2")
    monkeypatch.setenv("MQTT_RETAIN", "true")  # accepted but has no effect
    monkeypatch.setenv("MQTT_PUBLISH_INTERVAL_SECONDS", "45")
    monkeypatch.setenv("LOG_LEVEL", "warning")
    monkeypatch.setenv("HA_ENABLED", "false")
    monkeypatch.setenv("HA_BLE_DEVICE_1", "AA:BB:CC:DD:EE:FF,Backpack")
    s = load_config(write(tmp_path, EXAMPLE))
    assert s.server.port == 8100
    assert s.mqtt.host == "mqtt.example.com"
    assert s.mqtt.port == 8883
    assert s.mqtt.tls is True
    assert s.mqtt.username == "user"
    assert s.mqtt.password == "pw"
    assert s.mqtt.qos == 2
    assert s.publish.interval_seconds == 45
    assert s.logging.level == "warning"
    assert s.home_assistant.enabled is False
    # env devices merge with file devices
    assert s.tracked_macs == ["123456789ABC", "AABBCCDDEEFF"]


def test_ha_devices_from_env_skip_malformed():
    env = {
        "HA_BLE_DEVICE_10": "11:22:33:44:55:66,Ten",
        "HA_BLE_DEVICE_2": "aabbccddeeff,Two",
        "HA_BLE_DEVICE_3": "no-comma",
        "HA_BLE_DEVICE_4": "zz:zz:zz:zz:zz:zz,Bad MAC",
        "HA_BLE_DEVICE_X": "11:22:33:44:55:77,Ignored",
    }
    devices = load_ha_devices_from_env(env)
    assert list(devices.items()) == [("AABBCCDDEEFF", "Two"), ("112233445566", "Ten")]


def test_parse_device_entry():
    assert parse_device_entry("12:34:56:78:9A:BC, Car Keys") == ("123456789ABC", "Car Keys")
    assert parse_device_entry("12:34:56:78:9A:BC,") is None
    assert parse_device_entry("") is None


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_invalid_yaml(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "mqtt: [1, 2"))


def test_invalid_values(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "mqtt:\n  qos: 5\n"))


def test_invalid_yaml_device_mac(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "home_assistant:\n  devices:\n    nothex: Foo\n"))


def test_section_must_be_mapping(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "mqtt: 5\n"))


def test_bad_port_env(monkeypatch):
    monkeypatch.setenv("SERVER_PORT", "eighty")
    with pytest.raises(ConfigError):
        load_config()


def test_parse_broker_url():
    assert parse_broker_url("mqtt://broker:1884") == {"host": "broker", "port": 1884, "tls": False}
    assert parse_broker_url("tcp://broker") == {"host": "broker", "port": 1883, "tls": False}
    assert parse_broker_url("ssl://broker")["port"] == 8883
    with pytest.raises(ConfigError):
        parse_broker_url("http://broker")
    with pytest.raises(ConfigError):
        parse_broker_url("broker:1883")


def test_env_bool():
    assert env_bool("TRUE") and env_bool("1") and env_bool(" yes ")
    assert not env_bool("false")
    assert not env_bool("0")


def test_config_warnings(monkeypatch):
    s = Settings()
    s.home_assistant.enabled = True
    s.publish.interval_seconds = 10
    warnings = config_warnings(s)
    assert any("MQTT broker not configured" in w for w in warnings)
    assert any("no HA_BLE_DEVICE_X" in w for w in warnings)
    assert any("purely timer-driven" in w for w in warnings)


def test_retain_is_not_configurable(tmp_path, monkeypatch):
    monkeypatch.setenv("MQTT_RETAIN", "true")
    s = load_config(write(tmp_path, "mqtt:\n  retain: true\n"))
    assert "retain" not in s.mqtt.model_dump()
