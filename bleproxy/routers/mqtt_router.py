import json, time, logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import paho.mqtt.client as mqtt

from bleproxy.core.constants import DEVICE_STATE_TOPIC, GATEWAY_STATE_TOPIC
from bleproxy.core.envelope import GatewayEnvelope, gateway_status_document
from bleproxy.core.errors import PublishError
from bleproxy.core.payload import OutboundPayload


def normalize_prefix(prefix: str) -> str:
    if prefix and not prefix.endswith("/"):
        return prefix + "/"
    return prefix or ""


@dataclass
class PublishResult:
    total: int = 0
    published: List[str] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.published)

    @property
    def error_count(self) -> int:
        return len(self.errors)


class MQTTRouter:
    def __init__(self, name: str, cfg: dict):
        self.name = name
        self.cfg = cfg
        self.prefix = normalize_prefix(cfg.get("topic_prefix", ""))
        self.qos = int(cfg.get("qos", 1))
        # unique per process so two bridges on one broker don't kick each other off
        client_id = f"{cfg.get('client_id', 'bleproxy')}-{int(time.time())}"
        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_log = self._on_log
        if cfg.get("username"):
            self._client.username_pw_set(cfg.get("username"), cfg.get("password"))
        if cfg.get("tls"):
            self._client.tls_set()
        self._lock = threading.Lock()
        self._run = False
        self._connected = False
        self._loop_started = False
        self._retry_backoff = 1.0
        self._max_backoff = 30.0
        self._connect_attempts = 0
        self._threads = []

    # --- lifecycle ---
    def start(self):
        self._run = True
        t = threading.Thread(target=self._connect_loop, daemon=True)
        t.start()
        self._threads.append(t)

    def _connect_loop(self):
        while self._run:
            if self._connected:
                time.sleep(1.0)
                continue
            try:
                if self._attempt_connect():
                    continue
            except (OSError, ValueError) as e:
                logging.warning(f"[mqtt:{self.name}] connect error: {e}; retry in {self._retry_backoff:.1f}s")
                self._stop_loop()
            time.sleep(self._retry_backoff)
            self._retry_backoff = min(self._retry_backoff * 2, self._max_backoff)

    def _attempt_connect(self, wait_for: float = 5.0) -> bool:
        """One connect_async + loop_start cycle; the network loop is stopped again if on_connect never arrives."""
        host = self.cfg.get("host", "localhost")
        port = int(self.cfg.get("port", 1883))
        keepalive = int(self.cfg.get("keepalive", 60))
        self._connect_attempts += 1
        # a loop left over from a dropped session would reconnect on its own
        self._stop_loop()
        logging.info(f"[mqtt:{self.name}] attempting connect_async {host}:{port} (attempt {self._connect_attempts})")
        self._client.connect_async(host, port, keepalive=keepalive)
        self._client.loop_start()
        self._loop_started = True
        start = time.time()
        while self._run and not self._connected and (time.time() - start) < wait_for:
            time.sleep(0.1)
        if self._connected:
            self._retry_backoff = 1.0
            logging.info(f"[mqtt:{self.name}] connected (on_connect confirmed)")
            return True
        logging.warning(f"[mqtt:{self.name}] connect not confirmed within {wait_for}s; will retry in {self._retry_backoff:.1f}s")
        self._stop_loop()
        return False

    def _stop_loop(self):
        if self._loop_started:
            self._client.loop_stop()
            self._loop_started = False

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            logging.info(f"[mqtt:{self.name}] on_connect rc=0 (success)")
            self._connected = True
            self._connect_attempts = 0
        else:
            logging.warning(f"[mqtt:{self.name}] on_connect rc={reason_code}")

    def _on_log(self, client, userdata, level, buf):
        logging.debug(f"[mqtt:{self.name}] paho_log level={level} msg={buf}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected = False
        if not self._run:
            return
        if reason_code != 0:
            logging.warning(f"[mqtt:{self.name}] unexpected disconnect rc={reason_code}; will retry")
        else:
            logging.info(f"[mqtt:{self.name}] clean disconnect")

    def stop(self):
        self._run = False
        self._client.disconnect()
        self._stop_loop()
        self._connected = False
        for thr in self._threads:
            thr.join(timeout=2.0)
        self._threads = []
        logging.info(f"[mqtt:{self.name}] stopped")

    @property
    def is_connected(self) -> bool:
        return self._connected

    def status(self) -> dict:
        return {
            "connected": self._connected,
            "connect_attempts": self._connect_attempts,
            "host": self.cfg.get("host", "localhost"),
            "port": int(self.cfg.get("port", 1883)),
            "topic_prefix": self.prefix,
        }

    # --- topics ---
    def device_topic(self, mac_address: str) -> str:
        if not mac_address:
            raise ValueError("Invalid MAC address for topic construction")
        return DEVICE_STATE_TOPIC.format(prefix=self.prefix, mac=mac_address)

    def gateway_topic(self) -> str:
        return GATEWAY_STATE_TOPIC.format(prefix=self.prefix)

    # --- publishing ---
    def publish_json(self, topic: str, payload: dict, qos: Optional[int] = None, retain: bool = False):
        if not self._connected:
            raise PublishError(f"MQTT client not connected; cannot publish to {topic}")
        data = json.dumps(payload, separators=(",", ":"))
        with self._lock:
            info = self._client.publish(topic, data, qos=self.qos if qos is None else qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")
        logging.debug(f"[mqtt:{self.name}] published topic={topic} bytes={len(data)}")
        return info

    def publish_device_states(self, payloads: Sequence[OutboundPayload]) -> PublishResult:
        """Publish one state message per device. Failures are collected per payload."""
        result = PublishResult(total=len(payloads))
        if not payloads:
            logging.debug(f"[mqtt:{self.name}] no device data to publish")
            return result
        if not self._connected:
            logging.error(f"[mqtt:{self.name}] cannot publish {len(payloads)} payloads: not connected")
            result.errors = [{"index": i, "mac": p.mac_address, "error": "MQTT client not connected"} for i, p in enumerate(payloads)]
            return result
        for i, p in enumerate(payloads):
            try:
                # state messages are never retained; HA expires stale sensors itself
                self.publish_json(self.device_topic(p.mac_address), p.to_json(), retain=False)
                result.published.append(p.mac_address)
            except PublishError as e:
                result.errors.append({"index": i, "mac": p.mac_address, "error": str(e)})
                logging.warning(f"[mqtt:{self.name}] failed to publish payload {i} mac={p.mac_address}: {e}")
        if result.error_count:
            logging.warning(f"[mqtt:{self.name}] published {result.success_count}/{result.total} device states")
        else:
            logging.info(f"[mqtt:{self.name}] published {result.success_count} device states")
        return result

    def publish_gateway_state(self, gateway: GatewayEnvelope, timestamp):
        doc = gateway_status_document(gateway, timestamp)
        return self.publish_json(self.gateway_topic(), doc, retain=False)
