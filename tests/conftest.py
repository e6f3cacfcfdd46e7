"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import time

import pytest
from httpx import ASGITransport, AsyncClient

from guardianlink.config import AppConfig
from guardianlink.core.models import Coordinate
from guardianlink.main import build_engine
from guardianlink.settings_store import SettingsStore

ME = "alice@example.com"
GUARDIAN = "bob@example.com"


def make_fix(lat: float = 45.5, lng: float = -73.5, accuracy_m: float = 10.0,
             age_s: float = 0.0) -> Coordinate:
    return Coordinate(
        lat=lat,
        lng=lng,
        accuracy_m=accuracy_m,
        captured_at_ms=int((time.time() - age_s) * 1000),
    )


class FakeLocationProvider:
    """LocationProvider whose cheap and precise answers are set per test.

    An outcome is a Coordinate (returned), an exception (raised) or None
    (the request never settles).
    """

    def __init__(self) -> None:
        self.cheap: Coordinate | Exception | None = None
        self.precise: Coordinate | Exception | None = None
        self.cheap_delay_s = 0.0
        self.precise_delay_s = 0.0
        self.requests = []
        self.interrupted = 0
        self.watches: dict[int, tuple] = {}
        self.cancelled: list[int] = []
        self._next_handle = 1

    async def get_fix(self, request):
        self.requests.append(request)
        if request.high_accuracy:
            outcome, delay = self.precise, self.precise_delay_s
        else:
            outcome, delay = self.cheap, self.cheap_delay_s
        try:
            if delay:
                await asyncio.sleep(delay)
            if outcome is None:
                await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.interrupted += 1
            raise
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def watch(self, on_fix, on_error):
        handle = self._next_handle
        self._next_handle += 1
        self.watches[handle] = (on_fix, on_error)
        return handle

    def cancel_watch(self, handle):
        self.watches.pop(handle, None)
        self.cancelled.append(handle)

    def emit(self, fix: Coordinate) -> None:
        for on_fix, _ in list(self.watches.values()):
            on_fix(fix)

    def fail(self, exc: Exception) -> None:
        for _, on_error in list(self.watches.values()):
            on_error(exc)


class FakeSpeechProvider:
    """SpeechProvider replaying scripted listening passes.

    Each queued pass is a list of partial transcripts or an exception. With
    nothing queued, a pass stays open until it is cancelled.
    """

    def __init__(self) -> None:
        self._passes: asyncio.Queue = asyncio.Queue()
        self.opened = 0
        self.closed = 0

    def queue_pass(self, *transcripts: str) -> None:
        self._passes.put_nowait(list(transcripts))

    def fail_next(self, exc: Exception) -> None:
        self._passes.put_nowait(exc)

    async def listen_once(self, lang):
        self.opened += 1
        try:
            item = await self._passes.get()
            if isinstance(item, Exception):
                raise item
            for transcript in item:
                yield transcript
        finally:
            self.closed += 1


@pytest.fixture
def config(tmp_path):
    config = AppConfig()
    config.logging.level = "warning"
    config.identity.address = ME
    config.identity.name = "Alice"
    config.location.resolve_deadline_s = 0.3
    config.location.trigger_deadline_s = 0.2
    config.location.cheap_timeout_s = 0.1
    config.location.precise_timeout_s = 0.2
    config.trigger.restart_delay_s = 0.01
    config.transport.base_dir = str(tmp_path / "transport")
    config.updates.poll_interval_s = 0.02
    return config


@pytest.fixture
def location():
    return FakeLocationProvider()


@pytest.fixture
def speech():
    return FakeSpeechProvider()


@pytest.fixture
def settings():
    store = SettingsStore()
    store.add_contact("Bob", "Bob@Example.com")
    return store


@pytest.fixture
async def engine(config, location, speech, settings):
    engine = build_engine(config, location=location, speech=speech, settings=settings)
    yield engine
    await engine.close()


@pytest.fixture
def eventually():
    """Wait until ``predicate()`` is true, polling the event loop."""

    async def _eventually(predicate, timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        end = loop.time() + timeout
        while not predicate():
            if loop.time() > end:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)

    return _eventually


@pytest.fixture
async def client(engine):
    from guardianlink.main import app

    app.state.engine = engine
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.state.engine = None
