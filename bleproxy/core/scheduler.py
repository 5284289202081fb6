"""Throttled publication of device state.

Incoming batches are folded into a per-device cache. The cache is published
as a whole either when the flush timer fires or, earlier, when a tracked
device shows up for the first time in the current interval. With an
interval of 0 every batch is flushed straight away and no timer is used.

Both the request path and the timer thread go through one lock around
{cache upsert, tracked check, conditional flush, timer re-arm}.
"""
import logging
import threading
from typing import Callable, Iterable, Optional, Sequence

from bleproxy.core.envelope import GatewayEnvelope
from bleproxy.core.payload import OutboundPayload
from bleproxy.core.registry import DeviceStateCache
from bleproxy.core.utils import normalize_mac, utc_now


class PublicationScheduler:
    def __init__(
        self,
        flush_interval_seconds: float,
        tracked_macs: Iterable[str],
        publish_devices: Callable[[Sequence[OutboundPayload]], object],
        publish_gateway: Callable[[GatewayEnvelope, object], object],
        timer_factory=threading.Timer,
        clock=utc_now,
    ):
        if flush_interval_seconds < 0:
            raise ValueError("flush_interval_seconds must be >= 0")
        self.flush_interval = flush_interval_seconds
        self.tracked_macs = frozenset(normalize_mac(m) for m in tracked_macs)
        self._publish_devices = publish_devices
        self._publish_gateway = publish_gateway
        self._timer_factory = timer_factory
        self._clock = clock

        self._lock = threading.RLock()
        self._cache = DeviceStateCache()
        self._seen = set()
        self._gateway: Optional[GatewayEnvelope] = None
        self._timer = None
        # bumped on every (re)arm/cancel so a superseded timer that still fires is ignored
        self._generation = 0
        self._stopped = False

        self.immediate_flushes = 0
        self.scheduled_flushes = 0
        self.publish_failures = 0

    # --- lifecycle ---
    def start(self):
        with self._lock:
            self._stopped = False
            if self.flush_interval > 0:
                logging.info(f"[scheduler] scheduled publishing every {self.flush_interval}s, tracking {len(self.tracked_macs)} devices")
                self._arm_timer()
            else:
                logging.info("[scheduler] publish interval is 0; publishing every batch immediately")

    def shutdown(self):
        with self._lock:
            self._stopped = True
            self._cancel_timer()
            logging.info("[scheduler] stopped")

    # --- transitions ---
    def handle_incoming_batch(self, payloads: Sequence[OutboundPayload], gateway: Optional[GatewayEnvelope] = None) -> bool:
        """Cache a batch and flush now if required. Returns True on an immediate flush."""
        with self._lock:
            batch_macs = [self._cache.upsert(p) for p in payloads]
            if gateway is not None:
                self._gateway = gateway

            new_tracked = sorted({m for m in batch_macs if m in self.tracked_macs and m not in self._seen})
            self._seen.update(batch_macs)
            logging.debug(f"[scheduler] cached {len(batch_macs)} payloads; cache holds {len(self._cache)} devices")

            if self.flush_interval == 0:
                self._flush("Immediate publish (interval disabled)")
            elif new_tracked:
                logging.info(f"[scheduler] tracked devices reappeared, publishing now: {new_tracked}")
                self._flush("Immediate publish due to new tracked devices")
            else:
                logging.debug("[scheduler] no new tracked devices; waiting for next scheduled publish")
                return False

            self.immediate_flushes += 1
            # the triggering batch already counts as seen in the interval that starts now
            self._seen.update(batch_macs)
            self._arm_timer()
            return True

    def on_interval_elapsed(self):
        with self._lock:
            if self._stopped:
                return
            logging.info(f"[scheduler] scheduled publish triggered after {self.flush_interval} seconds")
            self._flush("Scheduled publish")
            self.scheduled_flushes += 1
            self._arm_timer()

    # --- internals ---
    def _on_timer(self, generation: int):
        with self._lock:
            if generation != self._generation:
                logging.debug(f"[scheduler] ignoring superseded timer generation={generation}")
                return
            self.on_interval_elapsed()

    def _flush(self, reason: str):
        payloads = self._cache.payloads()
        now = self._clock()
        logging.info(f"[scheduler] {reason}: publishing {len(payloads)} cached devices")
        try:
            self._publish_devices(payloads)
        except Exception as e:
            self.publish_failures += 1
            logging.error(f"[scheduler] {reason}: device publish failed: {e}", exc_info=True)
        if self._gateway is not None:
            try:
                self._publish_gateway(self._gateway, now)
            except Exception as e:
                self.publish_failures += 1
                logging.error(f"[scheduler] {reason}: gateway publish failed: {e}", exc_info=True)
        self._seen.clear()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._generation += 1

    def _arm_timer(self):
        self._cancel_timer()
        if self.flush_interval <= 0 or self._stopped:
            return
        t = self._timer_factory(self.flush_interval, self._on_timer, args=(self._generation,))
        t.daemon = True
        t.start()
        self._timer = t
        logging.debug(f"[scheduler] next scheduled publish in {self.flush_interval} seconds")

    # --- introspection ---
    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    @property
    def seen_since_flush(self) -> frozenset:
        with self._lock:
            return frozenset(self._seen)

    def cached_payloads(self):
        with self._lock:
            return self._cache.payloads()

    def state(self) -> dict:
        with self._lock:
            return {
                "flush_interval_seconds": self.flush_interval,
                "cache_size": len(self._cache),
                "devices": self._cache.snapshot(),
                "seen_since_flush": sorted(self._seen),
                "tracked_macs": sorted(self.tracked_macs),
                "timer_pending": self.timer_pending,
                "immediate_flushes": self.immediate_flushes,
                "scheduled_flushes": self.scheduled_flushes,
                "publish_failures": self.publish_failures,
            }
