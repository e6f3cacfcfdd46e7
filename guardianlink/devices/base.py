"""Device capability interfaces (ports): location and speech."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Protocol

if TYPE_CHECKING:
    from guardianlink.core.models import Coordinate


@dataclass(frozen=True)
class FixRequest:
    """Hints passed to the device for a one-shot fix."""
    high_accuracy: bool
    max_staleness_s: float
    timeout_s: float


class LocationProvider(Protocol):
    """Port: the platform location service.

    ``get_fix`` raises ``PermissionDenied`` when the user refused location
    access; any other exception is a transient provider failure. Watch errors
    are reported through ``on_error`` with the same convention.
    """

    async def get_fix(self, request: FixRequest) -> Coordinate: ...

    def watch(self, on_fix: Callable[[Coordinate], None],
              on_error: Callable[[Exception], None]) -> Any: ...

    def cancel_watch(self, handle: Any) -> None: ...


class SpeechProvider(Protocol):
    """Port: one listening pass yielding incremental transcripts.

    The iterator ends when the pass completes. ``PermissionDenied`` means the
    microphone is not available; other exceptions are transient.
    """

    def listen_once(self, lang: str) -> AsyncIterator[str]: ...
