"""UpdateLog driven by periodic snapshots of the full record set."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable

import structlog

from guardianlink.updates.base import OnChange, TransportUpdateLog

if TYPE_CHECKING:
    from guardianlink.core.models import UpdateRecord
    from guardianlink.transport.base import Transport

log = structlog.get_logger()


class PollingUpdateLog(TransportUpdateLog):
    """Re-reads and re-sorts the whole channel every ``poll_interval_s``.

    ``on_change`` receives the full ordered list once on subscribe and again
    whenever the list differs from the previous delivery.
    """

    def __init__(self, transport: Transport, poll_interval_s: float = 3.0) -> None:
        super().__init__(transport)
        self._poll_interval_s = poll_interval_s
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, channel_key: str, on_change: OnChange) -> Callable[[], None]:
        task = asyncio.get_running_loop().create_task(self._poll(channel_key, on_change))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _poll(self, channel_key: str, on_change: OnChange) -> None:
        last: list[UpdateRecord] | None = None
        while True:
            try:
                records = await self.read(channel_key)
            except Exception:
                log.warning("update_poll_failed", channel=channel_key, exc_info=True)
            else:
                if records != last:
                    last = records
                    try:
                        on_change(records)
                    except Exception:
                        log.error("update_subscriber_failed", channel=channel_key,
                                  exc_info=True)
            await asyncio.sleep(self._poll_interval_s)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
