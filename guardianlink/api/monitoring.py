"""Health check and monitoring endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

from guardianlink.api.deps import get_engine
from guardianlink.core.channels import ALERT_PREFIX, SEPARATOR

router = APIRouter(prefix="/api/v1")


@router.get("/health")
async def health(request: Request) -> dict:
    """Basic health check."""
    from guardianlink.main import VERSION

    engine = get_engine(request)
    snapshot = engine.stats.snapshot()
    return {
        "status": "ok",
        "version": VERSION,
        "uptime_seconds": snapshot["uptime_seconds"],
        "alert_state": engine.lifecycle.state.value,
        "detection_armed": engine.detector.armed,
        "transport": engine.config.transport.backend,
        "updates": engine.config.updates.backend,
    }


@router.get("/stats")
async def stats(request: Request) -> dict:
    """Engine counters.

    ``location.fixes`` counts fixes by the strategy that won the race, with
    ``last_known`` for degraded answers served from the watch cache.
    """
    return get_engine(request).stats.snapshot()


@router.get("/config")
async def get_client_config(request: Request) -> dict:
    """Parameters a client needs to talk to the same channels and pace itself."""
    config = get_engine(request).config
    return {
        "identity": config.identity.address,
        "channel_separator": SEPARATOR,
        "alert_channel_prefix": ALERT_PREFIX,
        "poll_interval_s": config.updates.poll_interval_s,
        "resolve_deadline_s": config.location.resolve_deadline_s,
        "check_in_default_s": config.alerts.check_in_default_s,
        "auto_expire_s": config.alerts.auto_expire_s,
    }
