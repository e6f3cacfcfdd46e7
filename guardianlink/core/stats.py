"""Engine statistics.

In-memory counters for alerts, fan-out, location acquisition and detection.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time


class EngineStats:
    """Thread-safe engine counters.

    ``location_fixes`` is keyed by the strategy that produced the fix
    (``cached_watch``, ``cheap``, ``precise``) or ``last_known`` when the
    resolver fell back to the watch cache.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()

        # Alerts
        self.alerts_created: int = 0
        self.alerts_resolved: int = 0
        self.alerts_without_location: int = 0
        self.triggers_suppressed: int = 0
        self.triggers_by_source: dict[str, int] = {}

        # Channels
        self.records_appended: int = 0
        self.fanout_deliveries: int = 0
        self.fanout_failures: int = 0

        # Location
        self.location_fixes: dict[str, int] = {}
        self.resolve_failures: int = 0
        self.watch_errors: int = 0

        # Detection
        self.detection_passes: int = 0
        self.detection_errors: int = 0

    def record_trigger(self, source: str) -> None:
        with self._lock:
            self.triggers_by_source[source] = self.triggers_by_source.get(source, 0) + 1

    def record_alert_created(self, *, with_location: bool) -> None:
        with self._lock:
            self.alerts_created += 1
            if not with_location:
                self.alerts_without_location += 1

    def record_alert_resolved(self) -> None:
        with self._lock:
            self.alerts_resolved += 1

    def record_suppressed(self) -> None:
        with self._lock:
            self.triggers_suppressed += 1

    def record_appended(self, count: int = 1) -> None:
        with self._lock:
            self.records_appended += count

    def record_fanout(self, delivered: int, failed: int) -> None:
        with self._lock:
            self.fanout_deliveries += delivered
            self.fanout_failures += failed

    def record_fix(self, strategy: str) -> None:
        with self._lock:
            self.location_fixes[strategy] = self.location_fixes.get(strategy, 0) + 1

    def record_resolve_failure(self) -> None:
        with self._lock:
            self.resolve_failures += 1

    def record_watch_error(self) -> None:
        with self._lock:
            self.watch_errors += 1

    def record_detection_pass(self) -> None:
        with self._lock:
            self.detection_passes += 1

    def record_detection_error(self) -> None:
        with self._lock:
            self.detection_errors += 1

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "alerts": {
                    "created": self.alerts_created,
                    "resolved": self.alerts_resolved,
                    "without_location": self.alerts_without_location,
                    "triggers_suppressed": self.triggers_suppressed,
                    "triggers_by_source": dict(self.triggers_by_source),
                },
                "channels": {
                    "records_appended": self.records_appended,
                    "fanout_deliveries": self.fanout_deliveries,
                    "fanout_failures": self.fanout_failures,
                },
                "location": {
                    "fixes": dict(self.location_fixes),
                    "resolve_failures": self.resolve_failures,
                    "watch_errors": self.watch_errors,
                },
                "detection": {
                    "passes": self.detection_passes,
                    "errors": self.detection_errors,
                },
            }
