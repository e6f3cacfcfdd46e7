"""Transport interface (port) for publishing and reading shared records."""

from __future__ import annotations

from typing import Any, Callable, Protocol

Unsubscribe = Callable[[], None]


class Transport(Protocol):
    """Port: a path-addressed tree of JSON values with value subscriptions.

    Paths are ``/``-separated. Writing ``None`` deletes the node.
    ``subscribe`` calls ``on_value`` with the current value immediately, then
    again after every write at, above or below ``path``.
    """

    async def write(self, path: str, value: Any) -> None: ...

    async def read_all(self, path: str) -> Any | None: ...

    async def append(self, path: str, value: Any) -> str: ...

    def subscribe(self, path: str, on_value: Callable[[Any | None], None]) -> Unsubscribe: ...
