"""Tests for the check-in safety timer."""

from __future__ import annotations

import asyncio

import pytest

from guardianlink.core.channels import alert_path
from guardianlink.core.checkin import EXPIRED_REASON
from guardianlink.core.lifecycle import AlertState


@pytest.mark.asyncio
async def test_expiry_raises_one_alert(engine, eventually):
    engine.start_check_in(0.05)

    await eventually(lambda: engine.lifecycle.current_alert is not None
                     and not engine.guard.held)

    alert = engine.lifecycle.current_alert
    assert alert.reason == EXPIRED_REASON
    assert alert.is_live
    assert not engine.checkin.running
    assert engine.stats.snapshot()["alerts"]["triggers_by_source"] == {"timer": 1}


@pytest.mark.asyncio
async def test_check_in_prevents_alert(engine):
    engine.start_check_in(0.05)
    assert engine.checkin.running

    assert engine.check_in() is True
    await asyncio.sleep(0.1)

    assert engine.lifecycle.state == AlertState.IDLE
    assert not engine.checkin.running
    assert engine.checkin.remaining_s is None


@pytest.mark.asyncio
async def test_check_in_without_timer(engine):
    assert engine.check_in() is False


@pytest.mark.asyncio
async def test_restart_replaces_countdown(engine):
    engine.start_check_in(0.05)
    engine.start_check_in(30)
    await asyncio.sleep(0.1)

    assert engine.lifecycle.state == AlertState.IDLE
    assert 29 < engine.checkin.remaining_s <= 30
    engine.check_in()


@pytest.mark.asyncio
async def test_default_duration(engine, config):
    assert engine.start_check_in() == config.alerts.check_in_default_s
    assert engine.checkin.running
    engine.check_in()


@pytest.mark.asyncio
async def test_invalid_duration(engine):
    with pytest.raises(ValueError):
        engine.checkin.start(0)
    with pytest.raises(ValueError):
        engine.checkin.start(-5)
    assert not engine.checkin.running


@pytest.mark.asyncio
async def test_expiry_with_live_alert_is_logged_not_raised(engine, eventually):
    await engine.manual_trigger()
    engine.start_check_in(0.01)

    await eventually(lambda: not engine.checkin.running)

    assert engine.stats.snapshot()["alerts"]["created"] == 1


@pytest.mark.asyncio
async def test_check_in_while_expired_trigger_is_resolving(engine, eventually):
    engine.start_check_in(0.01)
    await eventually(lambda: engine.lifecycle.current_alert is not None)
    alert_id = engine.lifecycle.current_alert.id

    assert engine.check_in() is True
    await eventually(lambda: not engine.guard.held)

    assert engine.lifecycle.state == AlertState.IDLE
    assert engine.lifecycle.current_alert is None
    assert await engine.transport.read_all(alert_path(alert_id)) is None

    alert = await engine.manual_trigger("real panic")
    assert alert.is_live
    assert alert.id != alert_id
