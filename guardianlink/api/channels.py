"""Channel endpoints: addressing, ordered records, messages, live stream."""

from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from guardianlink.api.deps import bad_request, error_response, get_engine, read_json
from guardianlink.core.channels import is_valid_channel
from guardianlink.core.errors import GuardianError
from guardianlink.core.models import record_to_dict

router = APIRouter(prefix="/api/v1")


@router.get("/channels/direct")
async def direct_channel(
    request: Request,
    with_address: str = Query(alias="with"),
) -> JSONResponse:
    """Key of the pairwise channel between this device and ``with``."""
    if not with_address.strip():
        return bad_request("with must not be empty")
    return JSONResponse(content={"channel": get_engine(request).direct_channel(with_address)})


@router.get("/channels/{channel_key}/records")
async def channel_records(channel_key: str, request: Request) -> JSONResponse:
    """Full record list, ordered by (postedAt, id)."""
    if not is_valid_channel(channel_key):
        return bad_request("invalid channel key")
    records = await get_engine(request).read_channel(channel_key)
    return JSONResponse(content={
        "channel": channel_key,
        "records": [record_to_dict(r) for r in records],
        "total": len(records),
    })


@router.post("/channels/{channel_key}/messages")
async def post_message(channel_key: str, request: Request) -> JSONResponse:
    """Body: {"text": "..."}."""
    body = await read_json(request)
    if body is None:
        return bad_request("invalid JSON")
    text = body.get("text")
    if not isinstance(text, str):
        return bad_request("text is required")
    try:
        record = await get_engine(request).post_message(channel_key, text)
    except ValueError as e:
        return bad_request(str(e))
    except GuardianError as e:
        return error_response(e)
    return JSONResponse(content={"record": record_to_dict(record)}, status_code=201)


@router.post("/channels/{channel_key}/location")
async def share_location(channel_key: str, request: Request) -> JSONResponse:
    try:
        record = await get_engine(request).share_location(channel_key)
    except ValueError as e:
        return bad_request(str(e))
    except GuardianError as e:
        return error_response(e)
    return JSONResponse(content={"record": record_to_dict(record)}, status_code=201)


@router.websocket("/channels/{channel_key}/ws")
async def channel_stream(websocket: WebSocket, channel_key: str):
    """
    Pushes {"event": "records", "data": [...]} with the full ordered list on
    every change. Clients may send "ping" and receive {"event": "pong"}.
    """
    engine = getattr(websocket.app.state, "engine", None)
    if engine is None or not is_valid_channel(channel_key):
        await websocket.close(code=4004, reason="Unknown channel")
        return

    await websocket.accept()
    queue: asyncio.Queue[list] = asyncio.Queue()
    unsubscribe = engine.subscribe_channel(channel_key, queue.put_nowait)

    async def pump() -> None:
        while True:
            records = await queue.get()
            payload = {
                "event": "records",
                "channel": channel_key,
                "data": [record_to_dict(r) for r in records],
            }
            await websocket.send_text(json.dumps(payload))

    pump_task = asyncio.create_task(pump())
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"event":"pong"}')
    except WebSocketDisconnect:
        pass
    finally:
        pump_task.cancel()
        unsubscribe()
