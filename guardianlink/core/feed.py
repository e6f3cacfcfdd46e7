"""Incoming alert feed for a guardian.

Watches every alert record on the transport and keeps the live ones that
involve ``address`` (as sender or recipient), newest first. Resolution is
terminal for readers: once an alert has been seen non-live it stays out of
the feed even if a stale snapshot later reports it live.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

import structlog

from guardianlink.core.channels import ALERTS_ROOT, normalize_address
from guardianlink.core.models import Alert, alert_from_dict

if TYPE_CHECKING:
    from guardianlink.transport.base import Transport

log = structlog.get_logger()


class IncomingAlertFeed:
    def __init__(self, transport: Transport, address: str) -> None:
        self._transport = transport
        self._address = normalize_address(address)
        self._resolved: set[str] = set()
        self._live: list[Alert] = []
        self._listeners: list[Callable[[list[Alert]], None]] = []
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def live_alerts(self) -> list[Alert]:
        return list(self._live)

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._transport.subscribe(ALERTS_ROOT, self._on_value)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_change(self, callback: Callable[[list[Alert]], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def refresh(self) -> list[Alert]:
        """Poll once, for readers without a subscription."""
        self._on_value(await self._transport.read_all(ALERTS_ROOT))
        return self.live_alerts

    def _on_value(self, snapshot: Any | None) -> None:
        self._live = self._select(snapshot)
        for callback in list(self._listeners):
            try:
                callback(self.live_alerts)
            except Exception:
                log.error("feed_listener_failed", exc_info=True)

    def _select(self, snapshot: Any | None) -> list[Alert]:
        if not isinstance(snapshot, dict):
            return []
        live: list[Alert] = []
        for key, raw in snapshot.items():
            try:
                alert = alert_from_dict(raw)
            except (KeyError, ValueError, TypeError, AttributeError):
                log.warning("alert_record_malformed", key=key)
                continue
            if not alert.involves(self._address):
                continue
            if not alert.is_live:
                self._resolved.add(alert.id)
                continue
            if alert.id in self._resolved:
                continue
            live.append(alert)
        live.sort(key=lambda a: (a.created_at_ms, a.id), reverse=True)
        return live
