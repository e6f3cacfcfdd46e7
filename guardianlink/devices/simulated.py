"""Simulated device capabilities for development and drills.

The location simulator walks a person around a start point at walking speed;
the speech simulator replays queued utterances, one per listening pass.
"""

from __future__ import annotations

import asyncio
import math
import random
import time
from typing import Any, AsyncIterator, Callable

import structlog

from guardianlink.core.errors import PermissionDenied
from guardianlink.core.models import Coordinate
from guardianlink.devices.base import FixRequest

log = structlog.get_logger()

# Meters per degree of latitude.
_M_PER_DEG = 111_320.0


class SimulatedLocationProvider:
    """LocationProvider producing a plausible walking trajectory."""

    def __init__(
        self,
        lat: float,
        lng: float,
        *,
        speed_mps: float = 1.4,
        coarse_latency_s: float = 0.2,
        precise_latency_s: float = 1.5,
        watch_interval_s: float = 2.0,
        permission_granted: bool = True,
    ) -> None:
        self._lat = lat
        self._lng = lng
        self._speed = speed_mps
        self._bearing = random.uniform(0, 360)
        self._coarse_latency = coarse_latency_s
        self._precise_latency = precise_latency_s
        self._watch_interval = watch_interval_s
        self.permission_granted = permission_granted
        self._last_step = time.monotonic()
        self._watches: dict[int, asyncio.Task] = {}
        self._next_handle = 1

    def _step(self) -> None:
        """Advance the walker to now."""
        now = time.monotonic()
        dt = now - self._last_step
        self._last_step = now
        self._bearing = (self._bearing + random.uniform(-20, 20)) % 360
        dist = self._speed * dt
        rad = math.radians(self._bearing)
        self._lat += dist * math.cos(rad) / _M_PER_DEG
        self._lng += dist * math.sin(rad) / (_M_PER_DEG * max(math.cos(math.radians(self._lat)), 1e-6))

    def _sample(self, accuracy_m: float) -> Coordinate:
        self._step()
        return Coordinate(
            lat=round(self._lat, 7),
            lng=round(self._lng, 7),
            accuracy_m=accuracy_m,
            captured_at_ms=int(time.time() * 1000),
            speed_mps=self._speed,
            heading_deg=round(self._bearing, 1),
        )

    async def get_fix(self, request: FixRequest) -> Coordinate:
        if not self.permission_granted:
            raise PermissionDenied("location")
        latency = self._precise_latency if request.high_accuracy else self._coarse_latency
        await asyncio.sleep(min(latency, request.timeout_s))
        if latency > request.timeout_s:
            raise TimeoutError("simulated fix timed out")
        accuracy = random.uniform(3, 12) if request.high_accuracy else random.uniform(50, 400)
        return self._sample(round(accuracy, 1))

    def watch(self, on_fix: Callable[[Coordinate], None],
              on_error: Callable[[Exception], None]) -> Any:
        handle = self._next_handle
        self._next_handle += 1
        self._watches[handle] = asyncio.get_running_loop().create_task(
            self._run_watch(on_fix, on_error))
        return handle

    async def _run_watch(self, on_fix: Callable[[Coordinate], None],
                         on_error: Callable[[Exception], None]) -> None:
        while True:
            if not self.permission_granted:
                on_error(PermissionDenied("location"))
            else:
                on_fix(self._sample(round(random.uniform(3, 15), 1)))
            await asyncio.sleep(self._watch_interval)

    def cancel_watch(self, handle: Any) -> None:
        task = self._watches.pop(handle, None)
        if task is not None:
            task.cancel()


class SimulatedSpeechProvider:
    """SpeechProvider that replays queued utterances word by word."""

    def __init__(self, pass_duration_s: float = 5.0, word_delay_s: float = 0.05) -> None:
        self._pass_duration = pass_duration_s
        self._word_delay = word_delay_s
        self._utterances: asyncio.Queue[str] = asyncio.Queue()
        self.permission_granted = True

    def say(self, utterance: str) -> None:
        self._utterances.put_nowait(utterance)

    async def listen_once(self, lang: str) -> AsyncIterator[str]:
        if not self.permission_granted:
            raise PermissionDenied("microphone")
        try:
            utterance = await asyncio.wait_for(self._utterances.get(), self._pass_duration)
        except asyncio.TimeoutError:
            return
        heard: list[str] = []
        for word in utterance.split():
            heard.append(word)
            await asyncio.sleep(self._word_delay)
            yield " ".join(heard)
