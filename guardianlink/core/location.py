"""Location resolver: races acquisition strategies against a deadline.

Three strategies start together as soon as ``resolve`` is called:

- ``cached_watch``: a fix the continuous watch already produced, if fresh.
- ``cheap``: a low-accuracy device fix that may be served from cache.
- ``precise``: a fresh high-accuracy device fix with a longer timeout.

The first acceptable result wins and the other tasks are cancelled, so a
late strategy can never touch the cache or the caller after ``resolve`` has
returned. When nothing succeeds in time, the last-known-good fix from the
watch is returned instead of failing.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

import structlog

from guardianlink.core.clock import Clock, now_ms
from guardianlink.core.errors import LocationUnavailable, PermissionDenied
from guardianlink.devices.base import FixRequest

if TYPE_CHECKING:
    from guardianlink.config import LocationConfig
    from guardianlink.core.models import Coordinate
    from guardianlink.core.stats import EngineStats
    from guardianlink.devices.base import LocationProvider

log = structlog.get_logger()


@dataclass(frozen=True)
class Strategy:
    name: str
    request: FixRequest | None  # None: served from the watch cache
    max_staleness_s: float = 0.0
    max_accuracy_m: float = 0.0  # 0 disables the accuracy bound

    def accepts(self, fix: Coordinate, now: int) -> bool:
        if self.max_staleness_s > 0 and fix.age_ms(now) > self.max_staleness_s * 1000:
            return False
        if self.max_accuracy_m > 0 and fix.accuracy_m > self.max_accuracy_m:
            return False
        return True


class FixCache:
    """Last-known-good fix shared by the watch and the resolver."""

    def __init__(self) -> None:
        self._fix: Coordinate | None = None
        self._active_watches = 0

    @property
    def latest(self) -> Coordinate | None:
        return self._fix

    @property
    def watch_active(self) -> bool:
        return self._active_watches > 0

    def offer(self, fix: Coordinate) -> bool:
        """Store ``fix`` unless a more recently captured one is already held."""
        if self._fix is not None and fix.captured_at_ms < self._fix.captured_at_ms:
            return False
        self._fix = fix
        return True

    def fresh(self, max_age_s: float, now: int) -> Coordinate | None:
        if self._fix is None or self._fix.age_ms(now) > max_age_s * 1000:
            return None
        return self._fix

    def watch_started(self) -> None:
        self._active_watches += 1

    def watch_stopped(self) -> None:
        self._active_watches = max(0, self._active_watches - 1)


@dataclass
class WatchHandle:
    provider_handle: Any = None
    active: bool = True


class LocationResolver:
    def __init__(
        self,
        provider: LocationProvider,
        config: LocationConfig,
        *,
        cache: FixCache | None = None,
        clock: Clock = now_ms,
        stats: EngineStats | None = None,
    ) -> None:
        self._provider = provider
        self._config = config
        self.cache = cache or FixCache()
        self._clock = clock
        self._stats = stats
        self._strategies = [
            Strategy("cached_watch", None, max_staleness_s=config.watch_freshness_s),
            Strategy(
                "cheap",
                FixRequest(high_accuracy=False,
                           max_staleness_s=config.cheap_max_staleness_s,
                           timeout_s=config.cheap_timeout_s),
                max_staleness_s=config.cheap_max_staleness_s,
                max_accuracy_m=config.max_accuracy_m,
            ),
            Strategy(
                "precise",
                FixRequest(high_accuracy=True, max_staleness_s=0.0,
                           timeout_s=config.precise_timeout_s),
                max_accuracy_m=config.max_accuracy_m,
            ),
        ]

    async def _run(self, strategy: Strategy) -> Coordinate:
        if strategy.request is None:
            if not self.cache.watch_active:
                raise LocationUnavailable("no active watch")
            fix = self.cache.fresh(strategy.max_staleness_s, self._clock())
            if fix is None:
                raise LocationUnavailable("no fresh watch fix")
            return fix

        fix = await asyncio.wait_for(self._provider.get_fix(strategy.request),
                                     strategy.request.timeout_s)
        if not strategy.accepts(fix, self._clock()):
            raise LocationUnavailable(f"{strategy.name} fix outside its bounds")
        return fix

    async def resolve(self, deadline_s: float | None = None) -> Coordinate:
        """Return one fix within ``deadline_s``.

        Raises PermissionDenied immediately if the platform refuses access,
        LocationUnavailable if no strategy succeeded and nothing is cached.
        """
        if deadline_s is None:
            deadline_s = self._config.resolve_deadline_s
        loop = asyncio.get_running_loop()
        end = loop.time() + deadline_s
        tasks = {loop.create_task(self._run(s)): s for s in self._strategies}
        priority = {s.name: i for i, s in enumerate(self._strategies)}
        pending: set[asyncio.Task] = set(tasks)

        try:
            while pending:
                remaining = end - loop.time()
                if remaining <= 0:
                    break
                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=lambda t: priority[tasks[t].name]):
                    strategy = tasks[task]
                    exc = task.exception()
                    if isinstance(exc, PermissionDenied):
                        log.warning("location_permission_denied", strategy=strategy.name)
                        raise exc
                    if exc is not None:
                        log.debug("location_strategy_failed", strategy=strategy.name,
                                  error=repr(exc))
                        continue
                    fix = task.result()
                    self.cache.offer(fix)
                    if self._stats is not None:
                        self._stats.record_fix(strategy.name)
                    log.info("location_resolved", strategy=strategy.name,
                             accuracy_m=fix.accuracy_m)
                    return fix
        finally:
            for task in pending:
                task.cancel()

        fallback = self.cache.latest
        if fallback is not None:
            if self._stats is not None:
                self._stats.record_fix("last_known")
            log.warning("location_degraded", age_ms=fallback.age_ms(self._clock()),
                        accuracy_m=fallback.accuracy_m)
            return fallback

        if self._stats is not None:
            self._stats.record_resolve_failure()
        log.warning("location_unavailable", deadline_s=deadline_s)
        raise LocationUnavailable(f"no fix within {deadline_s}s")

    # --- continuous watch ---

    def start_watch(self, on_fix: Callable[[Coordinate], None],
                    on_error: Callable[[Exception], None]) -> WatchHandle:
        handle = WatchHandle()

        def _on_fix(fix: Coordinate) -> None:
            if not handle.active:
                return
            self.cache.offer(fix)
            on_fix(fix)

        def _on_error(exc: Exception) -> None:
            if not handle.active:
                return
            if isinstance(exc, PermissionDenied):
                log.error("watch_permission_denied")
                self.stop_watch(handle)
                on_error(exc)
                return
            if self._stats is not None:
                self._stats.record_watch_error()
            log.warning("watch_error_ignored", error=repr(exc))

        self.cache.watch_started()
        try:
            handle.provider_handle = self._provider.watch(_on_fix, _on_error)
        except Exception:
            handle.active = False
            self.cache.watch_stopped()
            raise
        if not handle.active:
            # Stopped from inside the provider's first callback.
            self._provider.cancel_watch(handle.provider_handle)
        log.info("watch_started")
        return handle

    def stop_watch(self, handle: WatchHandle) -> None:
        if not handle.active:
            return
        handle.active = False
        self.cache.watch_stopped()
        if handle.provider_handle is not None:
            self._provider.cancel_watch(handle.provider_handle)
        log.info("watch_stopped")
