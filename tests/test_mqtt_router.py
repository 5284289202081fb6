import json
from datetime import datetime, timezone

import paho.mqtt.client as mqtt_module
import pytest

from bleproxy.core.envelope import GatewayEnvelope
from bleproxy.core.errors import PublishError
from bleproxy.core.payload import OutboundPayload
from bleproxy.routers.mqtt_router import MQTTRouter, normalize_prefix


class DummyInfo:
    def __init__(self, rc=0):
        self.rc = rc


class DummyClient:
    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs
        self.published = []
        self.credentials = None
        self.tls = False
        self.rc = 0
        self.calls = []

    def username_pw_set(self, u, p=None):
        self.credentials = (u, p)

    def tls_set(self):
        self.tls = True

    def connect_async(self, host, port, keepalive=60):
        self.calls.append("connect_async")

    def loop_start(self):
        self.calls.append("loop_start")

    def loop_stop(self):
        self.calls.append("loop_stop")

    def disconnect(self):
        pass

    def publish(self, topic, payload=None, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))
        return DummyInfo(self.rc)


def make_router(monkeypatch, connected=True, **cfg):
    monkeypatch.setattr(mqtt_module, "Client", DummyClient)
    base = {"host": "localhost", "port": 1883, "topic_prefix": "/gw/ab/", "qos": 1}
    base.update(cfg)
    router = MQTTRouter("test", base)
    if connected:
        router._on_connect(router._client, None, None, 0)
    return router


def make_payload(mac="C8:FD:19:49:A5:30", rssi=-50):
    return OutboundPayload(
        mac_address=mac,
        rssi=rssi,
        advertising_type_code=2,
        advertising_type_description="Scannable undirected advertisement",
        advertisement_data_hex="0201",
        last_seen_timestamp="2024-01-01T00:00:00.000Z",
    )


def test_normalize_prefix():
    assert normalize_prefix("/a/b") == "/a/b/"
    assert normalize_prefix("/a/b/") == "/a/b/"
    assert normalize_prefix("") == ""


def test_topics(monkeypatch):
    router = make_router(monkeypatch, topic_prefix="/blegateways/aprilbrother/device")
    assert router.device_topic("C8:FD:19:49:A5:30") == "/blegateways/aprilbrother/device/state/C8:FD:19:49:A5:30"
    assert router.gateway_topic() == "/blegateways/aprilbrother/device/gateway/state"
    with pytest.raises(ValueError):
        router.device_topic("")


def test_client_setup(monkeypatch):
    router = make_router(monkeypatch, username="u", password="p", tls=True, client_id="abc")
    assert router._client.credentials == ("u", "p")
    assert router._client.tls is True
    assert router._client.kwargs["client_id"].startswith("abc-")


def test_publish_device_states(monkeypatch):
    router = make_router(monkeypatch)
    result = router.publish_device_states([make_payload(), make_payload("AA:BB:CC:DD:EE:FF", -70)])
    assert result.total == 2
    assert result.success_count == 2
    assert result.error_count == 0
    topic, data, qos, retain = router._client.published[0]
    assert topic == "/gw/ab/state/C8:FD:19:49:A5:30"
    assert qos == 1
    assert retain is False
    assert json.loads(data) == make_payload().to_json()


def test_publish_when_disconnected(monkeypatch):
    router = make_router(monkeypatch, connected=False)
    result = router.publish_device_states([make_payload()])
    assert result.error_count == 1
    assert result.errors[0]["mac"] == "C8:FD:19:49:A5:30"
    assert router._client.published == []
    with pytest.raises(PublishError):
        router.publish_json("t", {})


def test_publish_empty_batch(monkeypatch):
    router = make_router(monkeypatch)
    result = router.publish_device_states([])
    assert result.total == 0
    assert router._client.published == []


def test_publish_rc_failure(monkeypatch):
    router = make_router(monkeypatch)
    router._client.rc = mqtt_module.MQTT_ERR_NO_CONN
    with pytest.raises(PublishError):
        router.publish_json("t", {"a": 1})
    result = router.publish_device_states([make_payload()])
    assert result.error_count == 1


def test_publish_gateway_state(monkeypatch):
    router = make_router(monkeypatch)
    gw = GatewayEnvelope(firmware_version="1.5.0", message_id=9, ip="10.0.0.2", mac="AABBCCDDEEFF")
    router.publish_gateway_state(gw, datetime(2024, 1, 1, tzinfo=timezone.utc))
    topic, data, _, retain = router._client.published[0]
    assert topic == "/gw/ab/gateway/state"
    assert retain is False
    doc = json.loads(data)
    assert doc["messageId"] == 9
    assert doc["processed_timestamp"] == "2024-01-01T00:00:00.000Z"


def test_connect_callbacks_and_status(monkeypatch):
    router = make_router(monkeypatch, connected=False)
    assert router.is_connected is False
    router._on_connect(router._client, None, None, 5)
    assert router.is_connected is False
    router._on_connect(router._client, None, None, 0)
    assert router.status()["connected"] is True
    router._on_disconnect(router._client, None, None, 7)
    assert router.is_connected is False
    assert router.status()["topic_prefix"] == "/gw/ab/"


def test_unconfirmed_connect_stops_network_loop_before_retry(monkeypatch):
    router = make_router(monkeypatch, connected=False)
    router._run = True
    assert router._attempt_connect(wait_for=0) is False
    assert router._attempt_connect(wait_for=0) is False
    # paho's loop never keeps running into the next connect_async
    assert router._client.calls == [
        "connect_async", "loop_start", "loop_stop",
        "connect_async", "loop_start", "loop_stop",
    ]
    assert router.status()["connect_attempts"] == 2


def test_confirmed_connect_keeps_loop_running(monkeypatch):
    router = make_router(monkeypatch, connected=False)
    router._run = True
    router._client.loop_start = lambda: router._on_connect(router._client, None, None, 0)
    assert router._attempt_connect(wait_for=1) is True
    assert "loop_stop" not in router._client.calls
    router.stop()
    assert router._client.calls[-1] == "loop_stop"
