"""GuardianLink: core internal data models.

These are plain dataclasses with no framework dependencies.
Transport payloads (plain dicts) are converted to/from these at the boundary.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Union


class TriggerSource(str, Enum):
    MANUAL = "manual"
    VOICE = "voice"
    TIMER = "timer"
    EXPIRY = "expiry"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float
    accuracy_m: float
    captured_at_ms: int
    speed_mps: float | None = None
    heading_deg: float | None = None

    def age_ms(self, now_ms: int) -> int:
        return max(0, now_ms - self.captured_at_ms)

    def maps_link(self) -> str:
        return f"https://maps.google.com/?q={self.lat:.5f},{self.lng:.5f}"


@dataclass(frozen=True)
class Identity:
    """The device owner. Sign-in lives outside this engine."""
    address: str
    display_name: str


@dataclass(frozen=True)
class Contact:
    id: str
    display_name: str
    address: str
    is_registered_user: bool = False


@dataclass(frozen=True)
class SettingsSnapshot:
    trigger_phrase: str
    message_template: str
    recipients: tuple[Contact, ...] = ()

    @property
    def recipient_addresses(self) -> list[str]:
        return [c.address for c in self.recipients]


@dataclass(frozen=True)
class Alert:
    id: str
    sender_address: str
    sender_name: str
    created_at_ms: int
    reason: str
    recipients: tuple[str, ...]
    last_location: Coordinate | None = None
    is_live: bool = True

    def resolved(self) -> Alert:
        if not self.is_live:
            return self
        return replace(self, is_live=False)

    def with_location(self, fix: Coordinate) -> Alert:
        """Attach a newer fix. Resolved alerts and older fixes are ignored."""
        if not self.is_live:
            return self
        current = self.last_location
        if current is not None and fix.captured_at_ms < current.captured_at_ms:
            return self
        return replace(self, last_location=fix)

    def involves(self, address: str) -> bool:
        return address == self.sender_address or address in self.recipients


@dataclass(frozen=True)
class TextRecord:
    id: str
    sender_address: str
    sender_name: str
    text: str
    posted_at_ms: int

    kind = "text"


@dataclass(frozen=True)
class LocationPinRecord:
    id: str
    sender_address: str
    sender_name: str
    text: str
    posted_at_ms: int
    lat: float = 0.0
    lng: float = 0.0

    kind = "locationPin"


UpdateRecord = Union[TextRecord, LocationPinRecord]


def ordering_key(record: UpdateRecord) -> tuple[int, str]:
    return (record.posted_at_ms, record.id)


def record_id(channel_key: str, sender_address: str, kind: str, posted_at_ms: int,
              text: str, lat: float | None = None, lng: float | None = None) -> str:
    """Content-derived record id, stable across retries of the same write."""
    parts = [channel_key, sender_address, kind, str(posted_at_ms), text]
    if lat is not None and lng is not None:
        parts.append(f"{lat:.7f},{lng:.7f}")
    digest = hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()
    return f"r{posted_at_ms:013d}_{digest[:16]}"


def make_text_record(channel_key: str, sender: Identity, text: str,
                     posted_at_ms: int) -> TextRecord:
    return TextRecord(
        id=record_id(channel_key, sender.address, TextRecord.kind, posted_at_ms, text),
        sender_address=sender.address,
        sender_name=sender.display_name,
        text=text,
        posted_at_ms=posted_at_ms,
    )


def make_pin_record(channel_key: str, sender: Identity, text: str,
                    fix: Coordinate, posted_at_ms: int) -> LocationPinRecord:
    return LocationPinRecord(
        id=record_id(channel_key, sender.address, LocationPinRecord.kind,
                     posted_at_ms, text, fix.lat, fix.lng),
        sender_address=sender.address,
        sender_name=sender.display_name,
        text=text,
        posted_at_ms=posted_at_ms,
        lat=fix.lat,
        lng=fix.lng,
    )


# --- dict conversion (transport boundary) ---

def coordinate_to_dict(fix: Coordinate) -> dict[str, Any]:
    data: dict[str, Any] = {
        "lat": fix.lat,
        "lng": fix.lng,
        "accuracy": fix.accuracy_m,
        "capturedAt": fix.captured_at_ms,
    }
    if fix.speed_mps is not None:
        data["speed"] = fix.speed_mps
    if fix.heading_deg is not None:
        data["heading"] = fix.heading_deg
    return data


def coordinate_from_dict(data: dict[str, Any]) -> Coordinate:
    return Coordinate(
        lat=float(data["lat"]),
        lng=float(data["lng"]),
        accuracy_m=float(data.get("accuracy", 0.0)),
        captured_at_ms=int(data.get("capturedAt", 0)),
        speed_mps=data.get("speed"),
        heading_deg=data.get("heading"),
    )


def alert_to_dict(alert: Alert) -> dict[str, Any]:
    return {
        "id": alert.id,
        "senderAddress": alert.sender_address,
        "senderName": alert.sender_name,
        "createdAt": alert.created_at_ms,
        "reason": alert.reason,
        "recipients": list(alert.recipients),
        "lastLocation": coordinate_to_dict(alert.last_location) if alert.last_location else None,
        "isLive": alert.is_live,
    }


def alert_from_dict(data: dict[str, Any]) -> Alert:
    loc = data.get("lastLocation")
    return Alert(
        id=str(data["id"]),
        sender_address=str(data["senderAddress"]),
        sender_name=str(data.get("senderName", "")),
        created_at_ms=int(data["createdAt"]),
        reason=str(data.get("reason", "")),
        recipients=tuple(data.get("recipients") or ()),
        last_location=coordinate_from_dict(loc) if loc else None,
        is_live=bool(data.get("isLive", False)),
    )


def record_to_dict(record: UpdateRecord) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": record.id,
        "kind": record.kind,
        "senderAddress": record.sender_address,
        "senderName": record.sender_name,
        "text": record.text,
        "postedAt": record.posted_at_ms,
    }
    if isinstance(record, LocationPinRecord):
        data["lat"] = record.lat
        data["lng"] = record.lng
    return data


def record_from_dict(data: dict[str, Any], fallback_id: str = "") -> UpdateRecord:
    """Parse a stored record. Raises KeyError/ValueError/TypeError on malformed input."""
    kind = data.get("kind", TextRecord.kind)
    common = dict(
        id=str(data.get("id") or fallback_id),
        sender_address=str(data["senderAddress"]),
        sender_name=str(data.get("senderName", "")),
        text=str(data.get("text", "")),
        posted_at_ms=int(data["postedAt"]),
    )
    if not common["id"]:
        raise ValueError("record has no id")
    if kind == LocationPinRecord.kind:
        return LocationPinRecord(lat=float(data["lat"]), lng=float(data["lng"]), **common)
    if kind == TextRecord.kind:
        return TextRecord(**common)
    raise ValueError(f"unknown record kind {kind!r}")


def contact_to_dict(contact: Contact) -> dict[str, Any]:
    return {
        "id": contact.id,
        "name": contact.display_name,
        "address": contact.address,
        "isRegisteredUser": contact.is_registered_user,
    }


def contact_from_dict(data: dict[str, Any]) -> Contact:
    return Contact(
        id=str(data["id"]),
        display_name=str(data.get("name", "")),
        address=str(data["address"]),
        is_registered_user=bool(data.get("isRegisteredUser", False)),
    )


@dataclass
class DetectionStatus:
    armed: bool = False
    phrase: str = ""
    last_heard: str = ""
    error: str = ""
    passes: int = 0
    triggers: int = 0
