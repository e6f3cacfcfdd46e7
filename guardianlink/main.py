"""GuardianLink: main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, transport, update log, devices and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI

from guardianlink.api.alerts import router as alerts_router
from guardianlink.api.channels import router as channels_router
from guardianlink.api.detection import router as detection_router
from guardianlink.api.monitoring import router as monitoring_router
from guardianlink.api.settings import router as settings_router
from guardianlink.config import AppConfig, load_config
from guardianlink.core.models import Identity
from guardianlink.core.stats import EngineStats
from guardianlink.devices.simulated import SimulatedLocationProvider, SimulatedSpeechProvider
from guardianlink.engine import GuardianEngine
from guardianlink.settings_store import SettingsStore, YamlSettingsStore
from guardianlink.transport.file_transport import FileTransport
from guardianlink.transport.memory import MemoryTransport
from guardianlink.updates.poll_log import PollingUpdateLog
from guardianlink.updates.push_log import PushUpdateLog

if TYPE_CHECKING:
    from guardianlink.devices.base import LocationProvider, SpeechProvider
    from guardianlink.transport.base import Transport
    from guardianlink.updates.base import UpdateLog

log = structlog.get_logger()

VERSION = "0.1.0"


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


def _build_transport(config: AppConfig) -> Transport:
    if config.transport.backend == "file":
        return FileTransport(base_dir=config.transport.base_dir)
    if config.transport.backend != "memory":
        raise ValueError(f"unknown transport backend {config.transport.backend!r}")
    return MemoryTransport()


def _build_update_log(config: AppConfig, transport: Transport) -> UpdateLog:
    if config.updates.backend == "poll":
        return PollingUpdateLog(transport, poll_interval_s=config.updates.poll_interval_s)
    if config.updates.backend != "push":
        raise ValueError(f"unknown update log backend {config.updates.backend!r}")
    return PushUpdateLog(transport)


def _build_devices(config: AppConfig) -> tuple[LocationProvider, SpeechProvider]:
    if config.device.backend != "simulated":
        raise ValueError(f"unknown device backend {config.device.backend!r}")
    location = SimulatedLocationProvider(
        config.device.start_lat,
        config.device.start_lng,
        watch_interval_s=config.device.watch_interval_s,
    )
    return location, SimulatedSpeechProvider()


def build_engine(
    config: AppConfig,
    *,
    location: LocationProvider | None = None,
    speech: SpeechProvider | None = None,
    transport: Transport | None = None,
    settings: SettingsStore | None = None,
) -> GuardianEngine:
    """Assemble an engine from config; any adapter can be passed in instead."""
    if transport is None:
        transport = _build_transport(config)
    if settings is None:
        settings = YamlSettingsStore(config.settings.path) if config.settings.path else SettingsStore()
    if location is None or speech is None:
        default_location, default_speech = _build_devices(config)
        if location is None:
            location = default_location
        if speech is None:
            speech = default_speech

    return GuardianEngine(
        config=config,
        identity=Identity(address=config.identity.address, display_name=config.identity.name),
        settings=settings,
        transport=transport,
        update_log=_build_update_log(config, transport),
        location=location,
        speech=speech,
        stats=EngineStats(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    config = load_config()
    _setup_logging(config)

    log.info("engine_starting",
             env=config.server.env,
             transport=config.transport.backend,
             updates=config.updates.backend,
             device=config.device.backend)

    engine = build_engine(config)
    app.state.engine = engine

    log.info("engine_started",
             host=config.server.host,
             port=config.server.port,
             identity=config.identity.address)

    yield

    # Shutdown
    await engine.close()
    app.state.engine = None
    log.info("engine_stopped")


app = FastAPI(
    title="GuardianLink",
    description="Emergency acquisition and broadcast engine",
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(detection_router)
app.include_router(alerts_router)
app.include_router(channels_router)
app.include_router(settings_router)
app.include_router(monitoring_router)


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    config = load_config()
    uvicorn.run("guardianlink.main:app", host=config.server.host, port=config.server.port)
