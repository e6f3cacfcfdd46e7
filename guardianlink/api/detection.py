"""Voice detection endpoints: arm, disarm, status."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from guardianlink.api.deps import bad_request, get_engine, read_json, status_to_dict

router = APIRouter(prefix="/api/v1")


@router.post("/detection/arm")
async def arm_detection(request: Request) -> JSONResponse:
    """Start listening for the trigger phrase.

    Body (optional): {"phrase": "..."}. Without a phrase the configured
    trigger phrase from settings is used.
    """
    engine = get_engine(request)
    body = await read_json(request)
    if body is None:
        return bad_request("invalid JSON")
    phrase = body.get("phrase")
    if phrase is not None and not isinstance(phrase, str):
        return bad_request("phrase must be a string")
    try:
        status = await engine.arm_detection(phrase)
    except ValueError as e:
        return bad_request(str(e))
    return JSONResponse(content=status_to_dict(status))


@router.post("/detection/disarm")
async def disarm_detection(request: Request) -> JSONResponse:
    status = await get_engine(request).disarm_detection()
    return JSONResponse(content=status_to_dict(status))


@router.get("/detection")
async def detection_status(request: Request) -> JSONResponse:
    return JSONResponse(content=status_to_dict(get_engine(request).detection_status()))


@router.post("/detection/utterance", status_code=202)
async def inject_utterance(request: Request) -> JSONResponse:
    """Speak into the simulated microphone (drills and demos).

    Body: {"text": "..."}. Rejected with 409 when the device has a real
    microphone.
    """
    engine = get_engine(request)
    body = await read_json(request)
    if body is None:
        return bad_request("invalid JSON")
    text = body.get("text")
    if not isinstance(text, str) or not text.strip():
        return bad_request("text must be a non-empty string")
    if not engine.inject_utterance(text):
        return JSONResponse(
            content={"error": "not_simulated",
                     "message": "The microphone is not simulated on this device."},
            status_code=409,
        )
    return JSONResponse(content={"queued": True}, status_code=202)
