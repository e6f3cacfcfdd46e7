"""Channel addressing.

Two clients that know each other's address compute the same channel key with
no handshake: addresses are normalised, sorted, sanitised for use as a path
segment and joined with a separator that sanitising can never produce.

Alert channels live in their own namespace (``alert:<id>``); ``:`` is
sanitised out of pairwise keys so the two namespaces cannot collide.
"""

from __future__ import annotations

import re

SUBSTITUTE = "_"
SEPARATOR = "~"
ALERT_PREFIX = "alert:"

# Characters illegal in a transport path segment, plus the separator and the
# namespace marker.
_ILLEGAL = re.compile(r"[.@#$/\[\]:~\s]")

ALERTS_ROOT = "alerts"
CHANNELS_ROOT = "channels"


def normalize_address(address: str) -> str:
    return address.strip().lower()


def sanitize_segment(value: str) -> str:
    return _ILLEGAL.sub(SUBSTITUTE, value)


def derive_channel(address_a: str, address_b: str) -> str:
    """Symmetric pairwise channel key: derive_channel(a, b) == derive_channel(b, a)."""
    first, second = sorted((normalize_address(address_a), normalize_address(address_b)))
    return f"{sanitize_segment(first)}{SEPARATOR}{sanitize_segment(second)}"


def alert_channel(alert_id: str) -> str:
    return f"{ALERT_PREFIX}{sanitize_segment(alert_id)}"


def is_alert_channel(key: str) -> bool:
    return key.startswith(ALERT_PREFIX)


def alert_id_from_channel(key: str) -> str | None:
    if not is_alert_channel(key):
        return None
    return key[len(ALERT_PREFIX):]


def pair_participants(key: str) -> tuple[str, str] | None:
    """Return the two sanitised halves of a pairwise key, or None."""
    if is_alert_channel(key):
        return None
    first, sep, second = key.partition(SEPARATOR)
    if not sep or not first or not second or SEPARATOR in second:
        return None
    return first, second


def is_pair_member(key: str, address: str) -> bool:
    halves = pair_participants(key)
    if halves is None:
        return False
    return sanitize_segment(normalize_address(address)) in halves


def is_valid_channel(key: str) -> bool:
    if is_alert_channel(key):
        rest = key[len(ALERT_PREFIX):]
        return bool(rest) and sanitize_segment(rest) == rest
    halves = pair_participants(key)
    return halves is not None and all(sanitize_segment(h) == h for h in halves)


def make_alert_id(sender_address: str, created_at_ms: int) -> str:
    """Deterministic in (sender, created_at) so a retried trigger maps to the same alert."""
    return f"alert_{sanitize_segment(normalize_address(sender_address))}_{created_at_ms}"


def alert_path(alert_id: str) -> str:
    return f"{ALERTS_ROOT}/{alert_id}"


def channel_path(key: str) -> str:
    return f"{CHANNELS_ROOT}/{key}/updates"
