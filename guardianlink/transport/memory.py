"""In-process transport: a nested dict with value subscriptions."""

from __future__ import annotations

import copy
import itertools
import time
from typing import Any, Callable

import structlog

log = structlog.get_logger()


def split_path(path: str) -> list[str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts:
        raise ValueError(f"invalid path {path!r}")
    return parts


def _is_prefix(short: list[str], long: list[str]) -> bool:
    return long[:len(short)] == short


class MemoryTransport:
    """Transport backed by a dict tree. Zero dependencies."""

    def __init__(self) -> None:
        self._root: dict[str, Any] = {}
        self._listeners: dict[int, tuple[list[str], Callable[[Any | None], None]]] = {}
        self._listener_ids = itertools.count(1)
        self._push_seq = itertools.count()

    # --- tree helpers ---

    def _get(self, parts: list[str]) -> Any | None:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _set(self, parts: list[str], value: Any) -> None:
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[part] = child
            node = child
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = value

    def _apply(self, path: str, value: Any) -> None:
        parts = split_path(path)
        self._set(parts, copy.deepcopy(value))
        self._notify(parts)

    def _notify(self, parts: list[str]) -> None:
        for listener_id, (watched, callback) in list(self._listeners.items()):
            if not (_is_prefix(watched, parts) or _is_prefix(parts, watched)):
                continue
            try:
                callback(copy.deepcopy(self._get(watched)))
            except Exception:
                log.error("transport_listener_failed", listener=listener_id,
                          path="/".join(watched), exc_info=True)

    # --- Transport port ---

    async def write(self, path: str, value: Any) -> None:
        self._apply(path, value)

    async def read_all(self, path: str) -> Any | None:
        return copy.deepcopy(self._get(split_path(path)))

    async def append(self, path: str, value: Any) -> str:
        # Chronological keys, like a realtime database push id.
        key = f"-{int(time.time() * 1000):013d}{next(self._push_seq):06d}"
        await self.write(f"{path}/{key}", value)
        return key

    def subscribe(self, path: str, on_value: Callable[[Any | None], None]) -> Callable[[], None]:
        parts = split_path(path)
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = (parts, on_value)
        on_value(copy.deepcopy(self._get(parts)))

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
