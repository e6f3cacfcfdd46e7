"""Settings endpoints: trigger phrase, message template, guardians."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from guardianlink.api.deps import bad_request, get_engine, read_json
from guardianlink.core.models import contact_to_dict

router = APIRouter(prefix="/api/v1")


async def _settings_body(request: Request) -> dict:
    snapshot = await get_engine(request).settings.snapshot()
    return {
        "trigger_phrase": snapshot.trigger_phrase,
        "message_template": snapshot.message_template,
        "contacts": [contact_to_dict(c) for c in snapshot.recipients],
    }


@router.get("/settings")
async def get_settings(request: Request) -> JSONResponse:
    return JSONResponse(content=await _settings_body(request))


@router.put("/settings")
async def update_settings(request: Request) -> JSONResponse:
    """Body: {"trigger_phrase"?: str, "message_template"?: str}.

    A new trigger phrase applies the next time detection is armed.
    """
    store = get_engine(request).settings
    body = await read_json(request)
    if body is None:
        return bad_request("invalid JSON")
    phrase = body.get("trigger_phrase")
    template = body.get("message_template")
    for name, value in (("trigger_phrase", phrase), ("message_template", template)):
        if value is not None and not isinstance(value, str):
            return bad_request(f"{name} must be a string")
    try:
        if phrase is not None:
            store.set_trigger_phrase(phrase)
        if template is not None:
            store.set_message_template(template)
    except ValueError as e:
        return bad_request(str(e))
    return JSONResponse(content=await _settings_body(request))


@router.post("/settings/contacts")
async def add_contact(request: Request) -> JSONResponse:
    """Body: {"name": str, "address": str, "is_registered_user"?: bool}."""
    body = await read_json(request)
    if body is None:
        return bad_request("invalid JSON")
    name = body.get("name")
    address = body.get("address")
    if not isinstance(name, str) or not isinstance(address, str):
        return bad_request("name and address are required")
    try:
        contact = get_engine(request).settings.add_contact(
            name, address, bool(body.get("is_registered_user", False)))
    except ValueError as e:
        return bad_request(str(e))
    return JSONResponse(content={"contact": contact_to_dict(contact)}, status_code=201)


@router.delete("/settings/contacts/{contact_id}")
async def remove_contact(contact_id: str, request: Request) -> JSONResponse:
    if not get_engine(request).settings.remove_contact(contact_id):
        return JSONResponse(
            content={"error": "contact_not_found", "message": "No such contact."},
            status_code=404,
        )
    return JSONResponse(content={"removed": contact_id})
