"""Tests for EngineStats."""

from __future__ import annotations

from guardianlink.core.stats import EngineStats


def test_initial_stats():
    snap = EngineStats().snapshot()
    assert snap["alerts"]["created"] == 0
    assert snap["alerts"]["triggers_by_source"] == {}
    assert snap["channels"]["records_appended"] == 0
    assert snap["location"]["fixes"] == {}
    assert snap["detection"]["passes"] == 0


def test_record_alerts():
    stats = EngineStats()
    stats.record_trigger("manual")
    stats.record_trigger("voice")
    stats.record_trigger("voice")
    stats.record_alert_created(with_location=True)
    stats.record_alert_created(with_location=False)
    stats.record_alert_resolved()
    stats.record_suppressed()

    alerts = stats.snapshot()["alerts"]
    assert alerts["created"] == 2
    assert alerts["without_location"] == 1
    assert alerts["resolved"] == 1
    assert alerts["triggers_suppressed"] == 1
    assert alerts["triggers_by_source"] == {"manual": 1, "voice": 2}


def test_record_fanout():
    stats = EngineStats()
    stats.record_fanout(delivered=3, failed=1)
    stats.record_appended(3)
    stats.record_appended()

    channels = stats.snapshot()["channels"]
    assert channels["fanout_deliveries"] == 3
    assert channels["fanout_failures"] == 1
    assert channels["records_appended"] == 4


def test_record_location():
    stats = EngineStats()
    stats.record_fix("cheap")
    stats.record_fix("cheap")
    stats.record_fix("last_known")
    stats.record_resolve_failure()
    stats.record_watch_error()

    location = stats.snapshot()["location"]
    assert location["fixes"] == {"cheap": 2, "last_known": 1}
    assert location["resolve_failures"] == 1
    assert location["watch_errors"] == 1


def test_snapshot_is_a_copy():
    stats = EngineStats()
    stats.record_fix("precise")
    snap = stats.snapshot()
    snap["location"]["fixes"]["precise"] = 99

    assert stats.snapshot()["location"]["fixes"] == {"precise": 1}


def test_uptime():
    snap = EngineStats().snapshot()
    assert snap["uptime_seconds"] >= 0
