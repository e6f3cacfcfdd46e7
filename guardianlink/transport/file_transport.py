"""File-backed transport.

Every write is appended to a JSON Lines journal (source of truth) and then
replayed into the in-memory tree, so several processes sharing ``base_dir``
converge on the same state. Reads pick up lines written by other processes,
which makes this backend a natural fit for the polling update log.

Journal line: {"ts": <epoch ms>, "path": "<a/b/c>", "value": <json or null>}
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Callable

import structlog

from guardianlink.transport.memory import MemoryTransport

log = structlog.get_logger()

JOURNAL_NAME = "journal.jsonl"


class FileTransport(MemoryTransport):
    """Transport backed by an append-only journal on disk."""

    def __init__(self, base_dir: str | Path) -> None:
        super().__init__()
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._journal = self._base_dir / JOURNAL_NAME
        self._offset = 0
        self._refresh()

    def _refresh(self) -> None:
        """Apply journal lines appended since the last refresh."""
        if not self._journal.exists():
            return
        with open(self._journal, "rb") as f:
            f.seek(self._offset)
            chunk = f.read()
        if not chunk:
            return
        # Only consume complete lines; a concurrent writer may be mid-line.
        end = chunk.rfind(b"\n") + 1
        applied = 0
        for raw in chunk[:end].splitlines():
            if not raw.strip():
                continue
            try:
                entry = json.loads(raw)
                self._apply(entry["path"], entry.get("value"))
                applied += 1
            except (json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError, ValueError):
                log.warning("journal_line_skipped", path=str(self._journal),
                            offset=self._offset)
        self._offset += end
        if applied:
            log.debug("journal_replayed", entries=applied, offset=self._offset)

    async def write(self, path: str, value: Any) -> None:
        entry = {"ts": int(time.time() * 1000), "path": path, "value": value}
        line = json.dumps(entry, separators=(",", ":"), ensure_ascii=False)
        with open(self._journal, "a", encoding="utf-8") as f:
            f.write(line + "\n")
        self._refresh()

    async def read_all(self, path: str) -> Any | None:
        self._refresh()
        return await super().read_all(path)

    def subscribe(self, path: str, on_value: Callable[[Any | None], None]) -> Callable[[], None]:
        self._refresh()
        return super().subscribe(path, on_value)
