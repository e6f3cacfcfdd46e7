"""UpdateLog interface (port) and the ordering shared by every backend."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Protocol

import structlog

from guardianlink.core.channels import channel_path
from guardianlink.core.models import ordering_key, record_from_dict, record_to_dict

if TYPE_CHECKING:
    from guardianlink.core.models import UpdateRecord
    from guardianlink.transport.base import Transport

log = structlog.get_logger()

OnChange = Callable[[list["UpdateRecord"]], None]


class UpdateLog(Protocol):
    """Port: ordered, append-only record log per channel."""

    async def append(self, channel_key: str, record: UpdateRecord) -> None: ...

    async def read(self, channel_key: str) -> list[UpdateRecord]: ...

    def subscribe(self, channel_key: str, on_change: OnChange) -> Callable[[], None]: ...

    async def close(self) -> None: ...


def order_snapshot(channel_key: str, snapshot: Any | None) -> list[UpdateRecord]:
    """Parse a raw ``updates`` node and sort it by (posted_at, id).

    Arrival order is never trusted: the result depends only on the stored
    records, which is what keeps push and poll readers identical.
    """
    if not isinstance(snapshot, dict):
        return []
    records: dict[str, UpdateRecord] = {}
    for key, raw in snapshot.items():
        try:
            record = record_from_dict(raw, fallback_id=key)
        except (KeyError, ValueError, TypeError, AttributeError):
            log.warning("update_record_malformed", channel=channel_key, key=key)
            continue
        records[record.id] = record
    return sorted(records.values(), key=ordering_key)


class TransportUpdateLog:
    """Shared append/read over a Transport. Subclasses choose how to subscribe."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def append(self, channel_key: str, record: UpdateRecord) -> None:
        # Keyed by the content-derived id, so a retried append overwrites itself.
        await self._transport.write(f"{channel_path(channel_key)}/{record.id}",
                                    record_to_dict(record))
        log.debug("update_appended", channel=channel_key, record_id=record.id,
                  kind=record.kind)

    async def read(self, channel_key: str) -> list[UpdateRecord]:
        snapshot = await self._transport.read_all(channel_path(channel_key))
        return order_snapshot(channel_key, snapshot)

    async def close(self) -> None:
        """Release background work. Nothing to do for push delivery."""
