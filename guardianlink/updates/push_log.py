"""UpdateLog driven by transport change notifications."""

from __future__ import annotations

from typing import Any, Callable

from guardianlink.core.channels import channel_path
from guardianlink.updates.base import OnChange, TransportUpdateLog, order_snapshot


class PushUpdateLog(TransportUpdateLog):
    """Delivers the full ordered record list on every transport notification."""

    def subscribe(self, channel_key: str, on_change: OnChange) -> Callable[[], None]:
        def _on_value(snapshot: Any | None) -> None:
            on_change(order_snapshot(channel_key, snapshot))

        return self._transport.subscribe(channel_path(channel_key), _on_value)
