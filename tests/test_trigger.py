"""Tests for voice trigger detection and the in-flight guard."""

from __future__ import annotations

import asyncio

import pytest

from guardianlink.config import TriggerConfig
from guardianlink.core.errors import NoRecipients, PermissionDenied, TriggerEngineError
from guardianlink.core.stats import EngineStats
from guardianlink.core.trigger import InFlightGuard, TriggerDetector


@pytest.fixture
def guard():
    return InFlightGuard()


@pytest.fixture
async def detector(speech, guard):
    detector = TriggerDetector(speech, guard, TriggerConfig(restart_delay_s=0.01),
                               stats=EngineStats())
    yield detector
    await detector.disarm()


class Recorder:
    def __init__(self, exc: Exception | None = None) -> None:
        self.reasons: list[str] = []
        self.fatal: list[TriggerEngineError] = []
        self._exc = exc

    async def on_trigger(self, reason: str) -> None:
        self.reasons.append(reason)
        if self._exc is not None:
            raise self._exc

    def on_fatal(self, exc: TriggerEngineError) -> None:
        self.fatal.append(exc)


# --- InFlightGuard ---

def test_guard_is_exclusive():
    guard = InFlightGuard()
    token = guard.try_acquire()
    assert token is not None
    assert guard.held
    assert guard.try_acquire() is None
    guard.release(token)
    assert not guard.held


def test_stale_release_does_not_clear_new_holder():
    guard = InFlightGuard()
    old = guard.try_acquire()
    guard.force_release()
    new = guard.try_acquire()

    guard.release(old)

    assert guard.held
    guard.release(new)
    assert not guard.held


@pytest.mark.asyncio
async def test_wait_released(guard):
    token = guard.try_acquire()
    waiter = asyncio.create_task(guard.wait_released())
    await asyncio.sleep(0)
    assert not waiter.done()

    guard.release(token)
    await asyncio.wait_for(waiter, 0.5)


# --- TriggerDetector ---

@pytest.mark.asyncio
async def test_arm_rejects_empty_phrase(detector):
    rec = Recorder()
    with pytest.raises(ValueError):
        detector.arm("   ", rec.on_trigger, rec.on_fatal)
    assert not detector.armed


@pytest.mark.asyncio
async def test_phrase_match_is_case_insensitive(detector, speech, eventually):
    rec = Recorder()
    detector.arm("Help Me", rec.on_trigger, rec.on_fatal)
    speech.queue_pass("uh", "uh help", "uh help me")

    await eventually(lambda: rec.reasons)

    assert rec.reasons == ['Voice detected: "uh help me"']
    assert detector.status.triggers == 1
    assert detector.armed


@pytest.mark.asyncio
async def test_listening_restarts_after_each_pass(detector, speech, eventually):
    rec = Recorder()
    detector.arm("i am in danger", rec.on_trigger, rec.on_fatal)
    speech.queue_pass("nice weather")
    speech.queue_pass()
    speech.queue_pass("I am in danger")

    await eventually(lambda: rec.reasons)

    assert speech.opened >= 3
    assert detector.status.last_heard == "I am in danger"


@pytest.mark.asyncio
async def test_match_closes_the_pass(detector, speech, eventually):
    rec = Recorder()
    detector.arm("help", rec.on_trigger, rec.on_fatal)
    speech.queue_pass("help", "help help", "help help help")

    await eventually(lambda: rec.reasons)

    assert rec.reasons == ['Voice detected: "help"']
    assert speech.closed >= 1


@pytest.mark.asyncio
async def test_no_listening_while_guard_held(detector, speech, guard, eventually):
    rec = Recorder()
    token = guard.try_acquire()
    detector.arm("help", rec.on_trigger, rec.on_fatal)
    speech.queue_pass("help")

    await asyncio.sleep(0.05)
    assert rec.reasons == []
    assert speech.opened == 0

    guard.release(token)
    await eventually(lambda: rec.reasons)


@pytest.mark.asyncio
async def test_transient_failure_restarts_listening(detector, speech, eventually):
    rec = Recorder()
    detector.arm("help", rec.on_trigger, rec.on_fatal)
    speech.fail_next(RuntimeError("audio glitch"))
    speech.queue_pass("help")

    await eventually(lambda: rec.reasons)

    assert detector.armed
    assert rec.fatal == []


@pytest.mark.asyncio
async def test_microphone_denied_disarms(detector, speech, eventually):
    rec = Recorder()
    detector.arm("help", rec.on_trigger, rec.on_fatal)
    speech.fail_next(PermissionDenied("microphone"))

    await eventually(lambda: rec.fatal)

    assert not detector.armed
    assert "Microphone" in detector.status.error
    assert isinstance(rec.fatal[0], TriggerEngineError)


@pytest.mark.asyncio
async def test_permission_denied_from_trigger_disarms(detector, speech, eventually):
    rec = Recorder(PermissionDenied("location"))
    detector.arm("help", rec.on_trigger, rec.on_fatal)
    speech.queue_pass("help")

    await eventually(lambda: rec.fatal)

    assert not detector.armed


@pytest.mark.asyncio
async def test_rejected_trigger_keeps_listening(detector, speech, eventually):
    rec = Recorder(NoRecipients())
    detector.arm("help", rec.on_trigger, rec.on_fatal)
    speech.queue_pass("help")
    speech.queue_pass("help")

    await eventually(lambda: len(rec.reasons) == 2)

    assert detector.armed
    assert rec.fatal == []


@pytest.mark.asyncio
async def test_disarm_closes_open_pass(detector, speech, eventually):
    rec = Recorder()
    detector.arm("help", rec.on_trigger, rec.on_fatal)
    await eventually(lambda: speech.opened == 1)

    await detector.disarm()

    assert not detector.armed
    assert speech.closed == 1


@pytest.mark.asyncio
async def test_distress_keywords_are_opt_in(speech, guard):
    plain = TriggerDetector(speech, guard, TriggerConfig())
    keywords = TriggerDetector(speech, guard, TriggerConfig(use_distress_keywords=True))
    rec = Recorder()
    plain.arm("pineapple", rec.on_trigger, rec.on_fatal)
    keywords.arm("pineapple", rec.on_trigger, rec.on_fatal)

    assert not plain.matches("please send help")
    assert keywords.matches("please send HELP")
    assert plain.matches("PINEAPPLE now")

    await plain.disarm()
    await keywords.disarm()
