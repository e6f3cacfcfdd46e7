"""Shared helpers for the HTTP adapter."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from fastapi import Request
from fastapi.responses import JSONResponse

from guardianlink.core import errors

if TYPE_CHECKING:
    from guardianlink.core.models import DetectionStatus
    from guardianlink.engine import GuardianEngine

# Error class -> HTTP status. Subclasses are looked up along the MRO.
_STATUS = {
    errors.PermissionDenied: 403,
    errors.NotAParticipant: 403,
    errors.AlertNotFound: 404,
    errors.TriggerInProgress: 409,
    errors.AlertAlreadyActive: 409,
    errors.NoRecipients: 422,
    errors.AlertWriteFailure: 502,
    errors.ChannelWriteFailure: 502,
    errors.LocationUnavailable: 503,
    errors.TriggerEngineError: 503,
}


def get_engine(request: Request) -> GuardianEngine:
    engine = getattr(request.app.state, "engine", None)
    assert engine is not None, "Engine not initialized"
    return engine


def error_response(exc: errors.GuardianError) -> JSONResponse:
    status = next((_STATUS[cls] for cls in type(exc).__mro__ if cls in _STATUS), 500)
    return JSONResponse(
        content={"error": exc.code, "message": exc.user_message, "detail": str(exc)},
        status_code=status,
    )


def bad_request(message: str) -> JSONResponse:
    return JSONResponse(content={"error": "bad_request", "message": message},
                        status_code=400)


async def read_json(request: Request) -> dict[str, Any] | None:
    """Parse an optional JSON object body. Returns None if it is not valid."""
    body_bytes = await request.body()
    if not body_bytes.strip():
        return {}
    try:
        body = json.loads(body_bytes)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def status_to_dict(status: DetectionStatus) -> dict[str, Any]:
    return asdict(status)
