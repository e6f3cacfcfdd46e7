"""Alert lifecycle: raises, tracks and resolves emergencies.

States: IDLE -> ACTIVE -> RESOLVED. RESOLVED is terminal for an alert; a new
emergency always gets a new alert id.

Cancellation ("I am safe") flips the session to resolved before its first
await, and every write of the alert record goes through one per-alert lock
that reads the resolved flag at write time. Whatever order a trigger, a
location update and a cancel interleave in, the last stored record is the
non-live one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable

import structlog

from guardianlink.core.channels import (
    alert_channel,
    alert_id_from_channel,
    alert_path,
    derive_channel,
    is_alert_channel,
    is_pair_member,
    is_valid_channel,
    make_alert_id,
    normalize_address,
)
from guardianlink.core.clock import Clock, now_ms
from guardianlink.core.errors import (
    AlertAlreadyActive,
    AlertNotFound,
    AlertWriteFailure,
    ChannelWriteFailure,
    LocationUnavailable,
    NoRecipients,
    NotAParticipant,
    PermissionDenied,
    TriggerInProgress,
)
from guardianlink.core.models import (
    Alert,
    TriggerSource,
    alert_from_dict,
    alert_to_dict,
    make_pin_record,
    make_text_record,
)

if TYPE_CHECKING:
    from guardianlink.config import AlertConfig
    from guardianlink.core.location import LocationResolver, WatchHandle
    from guardianlink.core.models import (
        Coordinate,
        Identity,
        LocationPinRecord,
        TextRecord,
        UpdateRecord,
    )
    from guardianlink.core.stats import EngineStats
    from guardianlink.core.trigger import InFlightGuard
    from guardianlink.settings_store import SettingsStore
    from guardianlink.transport.base import Transport
    from guardianlink.updates.base import UpdateLog

log = structlog.get_logger()

TRACKING_TEXT = "Emergency GPS tracking active."
SAFE_TEXT = "I am safe. Alert resolved."
SHARED_TEXT = "Shared my location."


class AlertState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    RESOLVED = "resolved"


@dataclass
class AlertSession:
    alert: Alert
    resolved: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    watch: WatchHandle | None = None
    expiry: asyncio.Task | None = None

    @property
    def alert_id(self) -> str:
        return self.alert.id

    def view(self) -> Alert:
        return self.alert.resolved() if self.resolved else self.alert


def render_template(template: str, fix: Coordinate | None, reason: str) -> str:
    """Fill ``{location}`` and ``{reason}``; other braces are left alone."""
    location = fix.maps_link() if fix is not None else "unavailable"
    return template.replace("{location}", location).replace("{reason}", reason)


def emergency_text(fix: Coordinate | None, reason: str) -> str:
    if fix is None:
        return f"EMERGENCY ALERT: location unavailable - {reason}"
    return f"EMERGENCY ALERT: Location [{fix.lat:.5f}, {fix.lng:.5f}] - {reason}"


class AlertLifecycleManager:
    def __init__(
        self,
        *,
        identity: Identity,
        settings: SettingsStore,
        resolver: LocationResolver,
        transport: Transport,
        update_log: UpdateLog,
        guard: InFlightGuard,
        config: AlertConfig,
        trigger_deadline_s: float,
        stats: EngineStats | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self._identity = identity
        self._settings = settings
        self._resolver = resolver
        self._transport = transport
        self._update_log = update_log
        self._guard = guard
        self._config = config
        self._trigger_deadline_s = trigger_deadline_s
        self._stats = stats
        self._clock = clock
        self._session: AlertSession | None = None
        self._listeners: list[Callable[[Alert | None], None]] = []
        self._tasks: set[asyncio.Task] = set()
        self.last_error: str = ""

    # --- state ---

    @property
    def state(self) -> AlertState:
        if self._session is None:
            return AlertState.IDLE
        return AlertState.RESOLVED if self._session.resolved else AlertState.ACTIVE

    @property
    def current_alert(self) -> Alert | None:
        return self._session.view() if self._session is not None else None

    @property
    def active_alert(self) -> Alert | None:
        if self._session is None or self._session.resolved:
            return None
        return self._session.alert

    def on_change(self, callback: Callable[[Alert | None], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        alert = self.current_alert
        for callback in list(self._listeners):
            try:
                callback(alert)
            except Exception:
                log.error("alert_listener_failed", exc_info=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # --- Idle -> Active ---

    async def trigger_sos(self, reason: str,
                          source: TriggerSource = TriggerSource.MANUAL) -> Alert:
        """Raise an alert. Location is best effort; recipients are required."""
        token = self._guard.try_acquire()
        if token is None:
            if self._stats is not None:
                self._stats.record_suppressed()
            log.info("trigger_suppressed", source=source.value)
            raise TriggerInProgress()
        try:
            return await self._raise_alert(reason.strip() or "SOS", source)
        finally:
            self._guard.release(token)

    async def _raise_alert(self, reason: str, source: TriggerSource) -> Alert:
        if self._session is not None and not self._session.resolved:
            raise AlertAlreadyActive(self._session.alert_id)
        if self._stats is not None:
            self._stats.record_trigger(source.value)

        snapshot = await self._settings.snapshot()
        recipients = tuple(dict.fromkeys(
            normalize_address(a) for a in snapshot.recipient_addresses))
        if not recipients:
            log.warning("trigger_rejected", reason="no_recipients", source=source.value)
            raise NoRecipients()

        created_at = self._clock()
        previous = self._session
        # A new emergency always gets a new alert id.
        if previous is not None and created_at <= previous.alert.created_at_ms:
            created_at = previous.alert.created_at_ms + 1
        session = AlertSession(alert=Alert(
            id=make_alert_id(self._identity.address, created_at),
            sender_address=normalize_address(self._identity.address),
            sender_name=self._identity.display_name,
            created_at_ms=created_at,
            reason=reason,
            recipients=recipients,
        ))
        self._session = session
        self.last_error = ""
        log.warning("alert_triggered", alert_id=session.alert_id, source=source.value,
                    recipients=len(recipients))

        try:
            try:
                fix: Coordinate | None = await self._resolver.resolve(self._trigger_deadline_s)
            except LocationUnavailable:
                fix = None
                log.warning("alert_without_location", alert_id=session.alert_id)
            except PermissionDenied as exc:
                if self._session is session:
                    self._session = previous
                self.last_error = exc.user_message
                raise

            if fix is not None:
                session.alert = session.alert.with_location(fix)
            try:
                await self._persist(session)
            except Exception as exc:
                if self._session is session:
                    self._session = previous
                log.error("alert_write_failed", alert_id=session.alert_id, exc_info=True)
                raise AlertWriteFailure(repr(exc)) from exc
        except asyncio.CancelledError:
            # Never stored, so nobody can see or cancel it.
            if self._session is session:
                self._session = previous
            log.warning("alert_trigger_cancelled", alert_id=session.alert_id)
            raise

        if self._stats is not None:
            self._stats.record_alert_created(with_location=fix is not None)
        if fix is None:
            self.last_error = LocationUnavailable.user_message

        await self._write_intro(session, snapshot.message_template, fix)

        if session.resolved:
            log.info("alert_resolved_during_trigger", alert_id=session.alert_id)
            self._notify()
            return session.view()

        await self._fan_out(session.alert, fix)

        # Cancel may have landed during fan-out; no await between check and start.
        if not session.resolved:
            try:
                session.watch = self._resolver.start_watch(self._on_watch_fix,
                                                           self._on_watch_error)
            except PermissionDenied as exc:
                self.last_error = exc.user_message
                log.error("alert_watch_unavailable", alert_id=session.alert_id)
            if self._config.auto_expire_s > 0:
                session.expiry = self._spawn(self._expire(session))

        log.info("alert_created", alert_id=session.alert_id,
                 with_location=fix is not None)
        self._notify()
        return session.view()

    async def _persist(self, session: AlertSession) -> None:
        async with session.lock:
            if session.resolved:
                session.alert = session.alert.resolved()
            alert = session.alert
            await self._transport.write(alert_path(alert.id), alert_to_dict(alert))

    async def _write_intro(self, session: AlertSession, template: str,
                           fix: Coordinate | None) -> None:
        alert = session.alert
        key = alert_channel(alert.id)
        text = render_template(template, fix, alert.reason)
        if fix is not None:
            record: UpdateRecord = make_pin_record(key, self._identity, text, fix,
                                                   alert.created_at_ms)
        else:
            record = make_text_record(key, self._identity, text, alert.created_at_ms)
        try:
            await self._update_log.append(key, record)
        except Exception:
            log.error("alert_channel_write_failed", alert_id=alert.id, exc_info=True)
            return
        if self._stats is not None:
            self._stats.record_appended()

    async def _fan_out(self, alert: Alert, fix: Coordinate | None) -> None:
        results = await asyncio.gather(
            *(self._notify_recipient(alert, r, fix) for r in alert.recipients))
        delivered = sum(1 for ok in results if ok)
        failed = len(results) - delivered
        if self._stats is not None:
            self._stats.record_fanout(delivered, failed)
            self._stats.record_appended(delivered)
        log.info("fanout_complete", alert_id=alert.id, delivered=delivered, failed=failed)

    async def _notify_recipient(self, alert: Alert, recipient: str,
                                fix: Coordinate | None) -> bool:
        key = derive_channel(self._identity.address, recipient)
        text = emergency_text(fix, alert.reason)
        if fix is not None:
            record: UpdateRecord = make_pin_record(key, self._identity, text, fix,
                                                   alert.created_at_ms)
        else:
            record = make_text_record(key, self._identity, text, alert.created_at_ms)
        try:
            await self._update_log.append(key, record)
        except Exception as exc:
            failure = ChannelWriteFailure(key, repr(exc))
            log.error("fanout_branch_failed", alert_id=alert.id, channel=key,
                      error=str(failure))
            return False
        return True

    # --- Active -> Active ---

    def _on_watch_fix(self, fix: Coordinate) -> None:
        self._spawn(self.update_location(fix))

    def _on_watch_error(self, exc: Exception) -> None:
        if isinstance(exc, PermissionDenied):
            self.last_error = exc.user_message
        log.error("alert_watch_stopped", error=repr(exc))
        self._notify()

    async def update_location(self, fix: Coordinate) -> bool:
        """Attach a watch fix to the live alert. No-op once resolved."""
        session = self._session
        if session is None or session.resolved:
            return False
        updated = session.alert.with_location(fix)
        if updated is session.alert:
            return False
        session.alert = updated
        try:
            await self._persist(session)
        except Exception:
            log.warning("alert_location_write_failed", alert_id=session.alert_id,
                        exc_info=True)
            return False
        if session.resolved:
            return False
        key = alert_channel(session.alert_id)
        record = make_pin_record(key, self._identity, TRACKING_TEXT, fix, fix.captured_at_ms)
        try:
            await self._update_log.append(key, record)
        except Exception:
            log.warning("alert_location_append_failed", alert_id=session.alert_id,
                        exc_info=True)
        else:
            if self._stats is not None:
                self._stats.record_appended()
        self._notify()
        return True

    async def post_message(self, channel_key: str, text: str) -> TextRecord:
        text = text.strip()
        if not text:
            raise ValueError("message text must not be empty")
        await self._check_participant(channel_key)
        record = make_text_record(channel_key, self._identity, text, self._clock())
        await self._append_or_fail(channel_key, record)
        return record

    async def share_location(self, channel_key: str) -> LocationPinRecord:
        """Post the current position. Fails with LocationUnavailable if there is none."""
        await self._check_participant(channel_key)
        fix = await self._resolver.resolve()
        record = make_pin_record(channel_key, self._identity, SHARED_TEXT, fix, self._clock())
        await self._append_or_fail(channel_key, record)
        return record

    async def _append_or_fail(self, channel_key: str, record: UpdateRecord) -> None:
        try:
            await self._update_log.append(channel_key, record)
        except Exception as exc:
            log.error("channel_write_failed", channel=channel_key, exc_info=True)
            raise ChannelWriteFailure(channel_key, repr(exc)) from exc
        if self._stats is not None:
            self._stats.record_appended()

    async def _check_participant(self, channel_key: str) -> None:
        if not is_valid_channel(channel_key):
            raise ValueError(f"invalid channel key {channel_key!r}")
        me = normalize_address(self._identity.address)
        if not is_alert_channel(channel_key):
            if not is_pair_member(channel_key, me):
                raise NotAParticipant(channel_key)
            return
        alert = await self.find_alert(alert_id_from_channel(channel_key) or "")
        if not alert.involves(me):
            raise NotAParticipant(channel_key)

    async def find_alert(self, alert_id: str) -> Alert:
        session = self._session
        if session is not None and session.alert_id == alert_id:
            return session.view()
        raw = await self._transport.read_all(alert_path(alert_id)) if alert_id else None
        if not isinstance(raw, dict):
            raise AlertNotFound(alert_id)
        return alert_from_dict(raw)

    # --- Active -> Resolved ---

    async def cancel_alert(self, alert_id: str) -> Alert:
        """Mark the alert safe. Idempotent; always ends with is_live False."""
        session = self._session
        if session is None or session.alert_id != alert_id:
            return await self._resolve_stored(alert_id)

        first = not session.resolved
        session.resolved = True
        self._guard.force_release()
        if session.watch is not None:
            self._resolver.stop_watch(session.watch)
        if session.expiry is not None and session.expiry is not asyncio.current_task():
            session.expiry.cancel()
        if first:
            if self._stats is not None:
                self._stats.record_alert_resolved()
            log.warning("alert_resolved", alert_id=alert_id)

        await self._persist(session)

        if first:
            key = alert_channel(alert_id)
            record = make_text_record(key, self._identity, SAFE_TEXT, self._clock())
            try:
                await self._update_log.append(key, record)
            except Exception:
                log.warning("alert_safe_append_failed", alert_id=alert_id, exc_info=True)
            else:
                if self._stats is not None:
                    self._stats.record_appended()
        self._notify()
        return session.view()

    async def _resolve_stored(self, alert_id: str) -> Alert:
        alert = await self.find_alert(alert_id)
        if alert.sender_address != normalize_address(self._identity.address):
            raise NotAParticipant(alert_id)
        if alert.is_live:
            alert = alert.resolved()
            await self._transport.write(alert_path(alert.id), alert_to_dict(alert))
            if self._stats is not None:
                self._stats.record_alert_resolved()
            log.warning("alert_resolved", alert_id=alert_id, stored=True)
        return alert

    async def _expire(self, session: AlertSession) -> None:
        await asyncio.sleep(self._config.auto_expire_s)
        if session.resolved:
            return
        log.info("alert_auto_expired", alert_id=session.alert_id,
                 after_s=self._config.auto_expire_s)
        await self.cancel_alert(session.alert_id)

    async def close(self) -> None:
        session = self._session
        if session is not None:
            if session.watch is not None:
                self._resolver.stop_watch(session.watch)
            if session.expiry is not None:
                session.expiry.cancel()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
