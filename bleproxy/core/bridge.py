import logging
import threading
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from bleproxy.core.discovery import DiscoveryPublisher
from bleproxy.core.envelope import GatewayEnvelope, parse_envelope, validate_envelope
from bleproxy.core.errors import PublishError
from bleproxy.core.frame import FrameError, decode_frames, frame_statistics
from bleproxy.core.payload import build_payload
from bleproxy.core.scheduler import PublicationScheduler
from bleproxy.core.utils import utc_now


@dataclass
class IngestResult:
    envelope: GatewayEnvelope
    total_frames: int = 0
    decoded: int = 0
    errors: List[FrameError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    published_immediately: bool = False

    @property
    def all_failed(self) -> bool:
        return self.total_frames > 0 and self.decoded == 0


class Bridge:
    """Gateway reports in, device and gateway state out.

    Owns the scheduler and the discovery publisher; the MQTT router is
    injected so tests can hand in a dummy.
    """

    def __init__(self, settings, mqtt_router, scheduler: Optional[PublicationScheduler] = None,
                 clock=utc_now, timer_factory=threading.Timer):
        self.settings = settings
        self.mqtt = mqtt_router
        self._clock = clock
        self.scheduler = scheduler or PublicationScheduler(
            settings.publish.interval_seconds,
            settings.tracked_macs,
            self.publish_device_states,
            self.publish_gateway_state,
            timer_factory=timer_factory,
            clock=clock,
        )
        self.discovery = DiscoveryPublisher(mqtt_router, settings.home_assistant)
        self.reports_received = 0
        self._run = False
        self._stop_evt = threading.Event()
        self._threads = []

    # --- lifecycle ---
    def start(self):
        self._run = True
        self._stop_evt.clear()
        self.mqtt.start()
        self.scheduler.start()
        if self.settings.home_assistant.enabled:
            t = threading.Thread(target=self._discovery_loop, daemon=True)
            t.start()
            self._threads.append(t)
        logging.info("[bridge] started")

    def stop(self):
        self._run = False
        self._stop_evt.set()
        self.scheduler.shutdown()
        for thr in self._threads:
            thr.join(timeout=2.0)
        self._threads = []
        self.mqtt.stop()
        logging.info("[bridge] stopped")

    def _discovery_loop(self):
        interval = self.settings.home_assistant.discovery_interval_seconds
        while self._run:
            count = self.discovery.publish_all()
            if count:
                logging.info(f"[bridge] published discovery for {count} entities")
            self._stop_evt.wait(interval)

    # --- inbound ---
    def handle_envelope(self, decoded: Mapping[str, Any]) -> IngestResult:
        """Process one decoded gateway report.

        Raises EnvelopeMalformed for a report that is not a map or whose
        devices field is not a list. Individual bad frames are reported in
        the result and never abort the batch.
        """
        envelope = parse_envelope(decoded)
        self.reports_received += 1
        result = IngestResult(envelope=envelope, warnings=validate_envelope(envelope))
        for w in result.warnings:
            logging.warning(f"[bridge] gateway data: {w}")
        logging.info(
            f"[bridge] report mid={envelope.message_id} from gateway {envelope.mac or '?'} "
            f"({envelope.ip or '?'}) with {len(envelope.raw_device_frames)} frames"
        )

        decoded_frames = decode_frames(envelope.raw_device_frames)
        result.total_frames = decoded_frames.total
        result.decoded = decoded_frames.success_count
        result.errors = decoded_frames.errors
        if decoded_frames.error_count:
            logging.warning(f"[bridge] {decoded_frames.error_count}/{decoded_frames.total} frames failed to decode")
        if result.all_failed:
            return result
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            logging.debug(f"[bridge] batch statistics: {frame_statistics(decoded_frames.advertisements)}")

        now = self._clock()
        payloads = [build_payload(adv, envelope, now) for adv in decoded_frames.advertisements]
        result.published_immediately = self.scheduler.handle_incoming_batch(payloads, envelope)
        return result

    # --- outbound (scheduler callbacks) ---
    def publish_device_states(self, payloads):
        result = self.mqtt.publish_device_states(payloads)
        if result.total and not result.success_count:
            raise PublishError(f"none of {result.total} device states could be published")
        return result

    def publish_gateway_state(self, gateway: GatewayEnvelope, timestamp):
        return self.mqtt.publish_gateway_state(gateway, timestamp)

    def status(self) -> dict:
        ha = self.settings.home_assistant
        return {
            "mqtt": self.mqtt.status(),
            "scheduler": self.scheduler.state(),
            "reports_received": self.reports_received,
            "home_assistant": {
                "enabled": ha.enabled,
                "devices": dict(ha.devices),
                "discovery_published": sorted(self.discovery.published_devices),
            },
        }
