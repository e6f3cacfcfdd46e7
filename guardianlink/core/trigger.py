"""Voice trigger detection.

The detector keeps one listening pass open at a time and reopens a new one
as soon as the previous pass completes, for as long as it is armed. A match
closes the pass and hands the reason to ``on_trigger``; while a trigger is in
flight (the shared InFlightGuard is held) further matches are ignored.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog

from guardianlink.core.errors import GuardianError, PermissionDenied, TriggerEngineError
from guardianlink.core.models import DetectionStatus

if TYPE_CHECKING:
    from guardianlink.config import TriggerConfig
    from guardianlink.core.stats import EngineStats
    from guardianlink.devices.base import SpeechProvider

log = structlog.get_logger()

DISTRESS_KEYWORDS = ("help", "sos", "emergency", "danger", "guardian help")


class InFlightGuard:
    """Single in-flight flag shared by the detector and the lifecycle manager.

    ``try_acquire`` is synchronous so callers can take the guard before their
    first await. Each acquisition gets a token; releasing with a stale token
    is a no-op, so a slow trigger cannot clear a newer holder's guard.
    """

    def __init__(self) -> None:
        self._token: int | None = None
        self._seq = 0
        self._released = asyncio.Event()
        self._released.set()

    @property
    def held(self) -> bool:
        return self._token is not None

    def try_acquire(self) -> int | None:
        if self._token is not None:
            return None
        self._seq += 1
        self._token = self._seq
        self._released.clear()
        return self._token

    def release(self, token: int | None) -> None:
        if token is not None and token == self._token:
            self._token = None
            self._released.set()

    def force_release(self) -> None:
        self._token = None
        self._released.set()

    async def wait_released(self) -> None:
        await self._released.wait()


class TriggerDetector:
    def __init__(
        self,
        speech: SpeechProvider,
        guard: InFlightGuard,
        config: TriggerConfig,
        *,
        stats: EngineStats | None = None,
    ) -> None:
        self._speech = speech
        self._guard = guard
        self._config = config
        self._stats = stats
        self._phrase = ""
        self._task: asyncio.Task | None = None
        self._on_trigger: Callable[[str], Awaitable[Any]] | None = None
        self._on_fatal_error: Callable[[TriggerEngineError], None] | None = None
        self.status = DetectionStatus()

    @property
    def armed(self) -> bool:
        return self.status.armed

    def matches(self, transcript: str) -> bool:
        text = transcript.lower()
        if self._phrase and self._phrase in text:
            return True
        if self._config.use_distress_keywords:
            return any(k in text for k in DISTRESS_KEYWORDS)
        return False

    def arm(
        self,
        phrase: str,
        on_trigger: Callable[[str], Awaitable[Any]],
        on_fatal_error: Callable[[TriggerEngineError], None],
    ) -> None:
        phrase = phrase.strip().lower()
        if not phrase:
            raise ValueError("trigger phrase must not be empty")
        if self._task is not None:
            self._task.cancel()
        self._phrase = phrase
        self._on_trigger = on_trigger
        self._on_fatal_error = on_fatal_error
        self.status = DetectionStatus(armed=True, phrase=phrase)
        self._task = asyncio.get_running_loop().create_task(self._run())
        log.info("detection_armed", phrase=phrase, lang=self._config.language)

    async def disarm(self) -> None:
        self.status.armed = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            log.info("detection_disarmed")

    async def _run(self) -> None:
        try:
            while self.status.armed:
                if self._guard.held:
                    await self._guard.wait_released()
                    continue
                transcript = await self._listen_pass()
                if transcript is None:
                    continue
                await self._fire(transcript)
        except TriggerEngineError as exc:
            self.status.armed = False
            self.status.error = exc.user_message
            if self._stats is not None:
                self._stats.record_detection_error()
            log.error("detection_fatal", error=str(exc))
            if self._on_fatal_error is not None:
                self._on_fatal_error(exc)

    async def _listen_pass(self) -> str | None:
        """Run one listening pass. Returns the matching transcript, if any."""
        self.status.passes += 1
        if self._stats is not None:
            self._stats.record_detection_pass()
        try:
            async with aclosing(self._speech.listen_once(self._config.language)) as partials:
                async for transcript in partials:
                    self.status.last_heard = transcript
                    if self._guard.held:
                        continue
                    if self.matches(transcript):
                        return transcript
        except PermissionDenied as exc:
            raise TriggerEngineError(str(exc), user_message=exc.user_message) from exc
        except Exception as exc:
            if self._stats is not None:
                self._stats.record_detection_error()
            log.warning("listening_pass_failed", error=repr(exc))
            await asyncio.sleep(self._config.restart_delay_s)
            return None
        # Yield to the loop before reopening the next pass.
        await asyncio.sleep(0)
        return None

    async def _fire(self, transcript: str) -> None:
        self.status.triggers += 1
        reason = f'Voice detected: "{transcript}"'
        log.warning("voice_trigger_matched", transcript=transcript)
        assert self._on_trigger is not None
        try:
            await self._on_trigger(reason)
        except PermissionDenied as exc:
            raise TriggerEngineError(str(exc), user_message=exc.user_message) from exc
        except GuardianError as exc:
            log.warning("voice_trigger_rejected", error=exc.code)
        except Exception:
            log.error("voice_trigger_failed", exc_info=True)
