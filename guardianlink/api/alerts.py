"""Alert endpoints: manual trigger, resolution, status, guardian feed, check-in timer."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from guardianlink.api.deps import bad_request, error_response, get_engine, read_json
from guardianlink.core.channels import alert_channel
from guardianlink.core.errors import GuardianError, LocationUnavailable
from guardianlink.core.models import alert_to_dict

router = APIRouter(prefix="/api/v1")


@router.post("/alerts")
async def trigger_alert(request: Request) -> JSONResponse:
    """Raise an alert by hand (panic button).

    Body (optional): {"reason": "..."}. Succeeds whenever at least one
    guardian is configured, with or without a location fix.
    """
    engine = get_engine(request)
    body = await read_json(request)
    if body is None:
        return bad_request("invalid JSON")
    reason = body.get("reason") or ""
    if not isinstance(reason, str):
        return bad_request("reason must be a string")

    try:
        alert = await engine.manual_trigger(reason)
    except GuardianError as e:
        return error_response(e)

    result = {
        "alert": alert_to_dict(alert),
        "channel": alert_channel(alert.id),
        "location_attached": alert.last_location is not None,
    }
    if alert.last_location is None:
        result["warning"] = LocationUnavailable.user_message
    return JSONResponse(content=result, status_code=201)


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(alert_id: str, request: Request) -> JSONResponse:
    """"I am safe": mark the alert resolved. Safe to call more than once."""
    try:
        alert = await get_engine(request).cancel_alert(alert_id)
    except GuardianError as e:
        return error_response(e)
    return JSONResponse(content={"alert": alert_to_dict(alert)})


@router.get("/alerts/active")
async def active_alert(request: Request) -> JSONResponse:
    lifecycle = get_engine(request).lifecycle
    alert = lifecycle.current_alert
    return JSONResponse(content={
        "state": lifecycle.state.value,
        "alert": alert_to_dict(alert) if alert is not None else None,
        "message": lifecycle.last_error,
    })


@router.get("/alerts/incoming")
async def incoming_alerts(
    request: Request,
    address: str = Query(default=""),
) -> JSONResponse:
    """Live alerts that involve ``address`` (defaults to this device), newest first."""
    alerts = await get_engine(request).incoming_alerts(address or None)
    return JSONResponse(content={
        "alerts": [alert_to_dict(a) for a in alerts],
        "total": len(alerts),
    })


@router.post("/checkin")
async def start_check_in(request: Request) -> JSONResponse:
    """Start the safety timer. Body (optional): {"seconds": 600}."""
    engine = get_engine(request)
    body = await read_json(request)
    if body is None:
        return bad_request("invalid JSON")
    seconds = body.get("seconds")
    if seconds is not None and (isinstance(seconds, bool) or not isinstance(seconds, (int, float))):
        return bad_request("seconds must be a number")
    try:
        duration = engine.start_check_in(seconds)
    except ValueError as e:
        return bad_request(str(e))
    return JSONResponse(content={"running": True, "seconds": duration})


@router.delete("/checkin")
async def check_in(request: Request) -> JSONResponse:
    """Check in: stop the safety timer before it raises an alert."""
    stopped = get_engine(request).check_in()
    return JSONResponse(content={"running": False, "stopped": stopped})


@router.get("/checkin")
async def check_in_status(request: Request) -> JSONResponse:
    timer = get_engine(request).checkin
    return JSONResponse(content={"running": timer.running, "remaining_s": timer.remaining_s})
