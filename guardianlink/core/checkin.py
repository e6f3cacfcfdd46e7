"""Safety timer: raises an alert unless the user checks in before it expires."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from guardianlink.core.errors import GuardianError
from guardianlink.core.models import TriggerSource

if TYPE_CHECKING:
    from guardianlink.core.lifecycle import AlertLifecycleManager

log = structlog.get_logger()

EXPIRED_REASON = "Safety timer expired without check-in"


class CheckInTimer:
    def __init__(self, lifecycle: AlertLifecycleManager) -> None:
        self._lifecycle = lifecycle
        self._task: asyncio.Task | None = None
        self._deadline: float | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def remaining_s(self) -> float | None:
        if not self.running or self._deadline is None:
            return None
        return max(0.0, self._deadline - asyncio.get_running_loop().time())

    def start(self, seconds: float) -> None:
        """(Re)start the countdown."""
        if seconds <= 0:
            raise ValueError("timer duration must be positive")
        self.check_in(log_event=False)
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + seconds
        self._task = loop.create_task(self._countdown(seconds))
        log.info("checkin_timer_started", seconds=seconds)

    def check_in(self, *, log_event: bool = True) -> bool:
        """Stop the countdown. Returns True if a countdown was running."""
        was_running = self.running
        if self._task is not None:
            self._task.cancel()
        self._task = None
        self._deadline = None
        if was_running and log_event:
            log.info("checkin_received")
        return was_running

    async def _countdown(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        log.warning("checkin_timer_expired", seconds=seconds)
        try:
            await self._lifecycle.trigger_sos(EXPIRED_REASON, TriggerSource.TIMER)
        except GuardianError as exc:
            log.error("checkin_trigger_failed", error=exc.code)
        finally:
            self._deadline = None
