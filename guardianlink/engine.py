"""GuardianEngine: the owned context object behind every UI-facing operation.

One engine per device. It is created by whoever drives the lifecycle (the
HTTP app's lifespan, a test, a drill script) and torn down with ``close()``.
Detection state lives in the detector it owns and is initialised on arm and
released on disarm.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Callable

import structlog

from guardianlink.core.channels import derive_channel, normalize_address
from guardianlink.core.checkin import CheckInTimer
from guardianlink.core.clock import Clock, now_ms
from guardianlink.core.feed import IncomingAlertFeed
from guardianlink.core.lifecycle import AlertLifecycleManager
from guardianlink.core.location import LocationResolver
from guardianlink.core.models import TriggerSource
from guardianlink.core.stats import EngineStats
from guardianlink.core.trigger import InFlightGuard, TriggerDetector

if TYPE_CHECKING:
    from guardianlink.config import AppConfig
    from guardianlink.core.errors import TriggerEngineError
    from guardianlink.core.models import (
        Alert,
        DetectionStatus,
        Identity,
        LocationPinRecord,
        TextRecord,
        UpdateRecord,
    )
    from guardianlink.devices.base import LocationProvider, SpeechProvider
    from guardianlink.settings_store import SettingsStore
    from guardianlink.transport.base import Transport
    from guardianlink.updates.base import UpdateLog

log = structlog.get_logger()

MANUAL_REASON = "Panic button pressed"


class GuardianEngine:
    def __init__(
        self,
        *,
        config: AppConfig,
        identity: Identity,
        settings: SettingsStore,
        transport: Transport,
        update_log: UpdateLog,
        location: LocationProvider,
        speech: SpeechProvider,
        stats: EngineStats | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.config = config
        # Records, channels and alerts all compare the canonical address.
        identity = replace(identity, address=normalize_address(identity.address))
        self.identity = identity
        self.settings = settings
        self.transport = transport
        self.update_log = update_log
        self.speech = speech
        self.stats = stats or EngineStats()
        self.guard = InFlightGuard()
        self.resolver = LocationResolver(location, config.location, clock=clock,
                                         stats=self.stats)
        self.detector = TriggerDetector(speech, self.guard, config.trigger,
                                        stats=self.stats)
        self.lifecycle = AlertLifecycleManager(
            identity=identity,
            settings=settings,
            resolver=self.resolver,
            transport=transport,
            update_log=update_log,
            guard=self.guard,
            config=config.alerts,
            trigger_deadline_s=config.location.trigger_deadline_s,
            stats=self.stats,
            clock=clock,
        )
        self.checkin = CheckInTimer(self.lifecycle)
        self._feeds: list[IncomingAlertFeed] = []

    # --- detection ---

    async def arm_detection(self, phrase: str | None = None) -> DetectionStatus:
        if not phrase:
            phrase = (await self.settings.snapshot()).trigger_phrase
        self.detector.arm(phrase, self._on_voice_trigger, self._on_detection_fatal)
        return self.detector.status

    async def disarm_detection(self) -> DetectionStatus:
        await self.detector.disarm()
        return self.detector.status

    def detection_status(self) -> DetectionStatus:
        return self.detector.status

    def inject_utterance(self, text: str) -> bool:
        """Feed speech to a simulated microphone. False if the device is real."""
        say = getattr(self.speech, "say", None)
        if say is None:
            return False
        say(text)
        return True

    async def _on_voice_trigger(self, reason: str) -> None:
        await self.lifecycle.trigger_sos(reason, TriggerSource.VOICE)

    def _on_detection_fatal(self, exc: TriggerEngineError) -> None:
        # Background protection stays off until the user arms again.
        log.error("protection_halted", message=exc.user_message)

    # --- alerts ---

    async def manual_trigger(self, reason: str = MANUAL_REASON) -> Alert:
        return await self.lifecycle.trigger_sos(reason or MANUAL_REASON, TriggerSource.MANUAL)

    async def cancel_alert(self, alert_id: str) -> Alert:
        return await self.lifecycle.cancel_alert(alert_id)

    def on_alert_change(self, callback: Callable[[Alert | None], None]) -> Callable[[], None]:
        return self.lifecycle.on_change(callback)

    async def incoming_alerts(self, address: str | None = None) -> list[Alert]:
        feed = IncomingAlertFeed(self.transport, address or self.identity.address)
        return await feed.refresh()

    def watch_incoming(self, callback: Callable[[list[Alert]], None],
                       address: str | None = None) -> Callable[[], None]:
        feed = IncomingAlertFeed(self.transport, address or self.identity.address)
        feed.on_change(callback)
        feed.start()
        self._feeds.append(feed)

        def unsubscribe() -> None:
            feed.stop()
            if feed in self._feeds:
                self._feeds.remove(feed)

        return unsubscribe

    # --- check-in timer ---

    def start_check_in(self, seconds: float | None = None) -> float:
        duration = seconds if seconds else self.config.alerts.check_in_default_s
        self.checkin.start(duration)
        return duration

    def check_in(self) -> bool:
        return self.checkin.check_in()

    # --- channels ---

    def direct_channel(self, other_address: str) -> str:
        return derive_channel(self.identity.address, other_address)

    async def post_message(self, channel_key: str, text: str) -> TextRecord:
        return await self.lifecycle.post_message(channel_key, text)

    async def share_location(self, channel_key: str) -> LocationPinRecord:
        return await self.lifecycle.share_location(channel_key)

    async def read_channel(self, channel_key: str) -> list[UpdateRecord]:
        return await self.update_log.read(channel_key)

    def subscribe_channel(self, channel_key: str,
                          on_change: Callable[[list[UpdateRecord]], None]) -> Callable[[], None]:
        return self.update_log.subscribe(channel_key, on_change)

    async def close(self) -> None:
        self.checkin.check_in(log_event=False)
        await self.detector.disarm()
        await self.lifecycle.close()
        for feed in self._feeds:
            feed.stop()
        self._feeds.clear()
        await self.update_log.close()
        log.info("engine_closed")
