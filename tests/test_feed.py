"""Tests for the guardian's incoming alert feed."""

from __future__ import annotations

import pytest

from conftest import GUARDIAN, ME
from guardianlink.core.channels import alert_path
from guardianlink.core.feed import IncomingAlertFeed
from guardianlink.core.models import Alert, alert_to_dict
from guardianlink.transport.memory import MemoryTransport


def _alert(alert_id, created_at, sender=ME, recipients=(GUARDIAN,), live=True):
    return Alert(id=alert_id, sender_address=sender, sender_name="X",
                 created_at_ms=created_at, reason="help", recipients=tuple(recipients),
                 is_live=live)


async def _put(transport, alert):
    await transport.write(alert_path(alert.id), alert_to_dict(alert))


@pytest.mark.asyncio
async def test_refresh_lists_live_alerts_newest_first():
    transport = MemoryTransport()
    await _put(transport, _alert("a1", 1000))
    await _put(transport, _alert("a2", 3000))
    await _put(transport, _alert("a3", 2000, live=False))
    await _put(transport, _alert("a4", 4000, sender="eve@example.com",
                                 recipients=("mallory@example.com",)))

    alerts = await IncomingAlertFeed(transport, "Bob@Example.com").refresh()

    assert [a.id for a in alerts] == ["a2", "a1"]


@pytest.mark.asyncio
async def test_sender_sees_own_alert():
    transport = MemoryTransport()
    await _put(transport, _alert("a1", 1000))

    alerts = await IncomingAlertFeed(transport, ME).refresh()

    assert [a.id for a in alerts] == ["a1"]


@pytest.mark.asyncio
async def test_subscription_follows_resolution():
    transport = MemoryTransport()
    feed = IncomingAlertFeed(transport, GUARDIAN)
    seen = []
    feed.on_change(seen.append)
    feed.start()
    assert seen == [[]]

    live = _alert("a1", 1000)
    await _put(transport, live)
    assert [a.id for a in feed.live_alerts] == ["a1"]

    await _put(transport, live.resolved())
    assert feed.live_alerts == []

    feed.stop()
    assert transport.listener_count == 0


@pytest.mark.asyncio
async def test_resolved_alert_never_reappears():
    transport = MemoryTransport()
    feed = IncomingAlertFeed(transport, GUARDIAN)
    live = _alert("a1", 1000)
    await _put(transport, live.resolved())
    assert await feed.refresh() == []

    # A stale writer puts the live record back.
    await _put(transport, live)

    assert await feed.refresh() == []


@pytest.mark.asyncio
async def test_malformed_alerts_are_skipped():
    transport = MemoryTransport()
    await _put(transport, _alert("a1", 1000))
    await transport.write("alerts/broken", {"reason": "no id"})

    alerts = await IncomingAlertFeed(transport, GUARDIAN).refresh()

    assert [a.id for a in alerts] == ["a1"]


@pytest.mark.asyncio
async def test_engine_watch_incoming(engine):
    seen = []
    unsubscribe = engine.watch_incoming(seen.append, address=GUARDIAN)

    alert = await engine.manual_trigger()
    assert [a.id for a in seen[-1]] == [alert.id]

    await engine.cancel_alert(alert.id)
    assert seen[-1] == []

    unsubscribe()
    assert engine.transport.listener_count == 0
