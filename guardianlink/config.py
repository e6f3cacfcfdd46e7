"""Engine configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: GUARDIAN_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class IdentityConfig:
    address: str = "me@example.com"
    name: str = "Me"


@dataclass
class LocationConfig:
    resolve_deadline_s: float = 6.0
    trigger_deadline_s: float = 3.0
    watch_freshness_s: float = 30.0
    cheap_timeout_s: float = 1.5
    cheap_max_staleness_s: float = 600.0
    precise_timeout_s: float = 5.0
    max_accuracy_m: float = 0.0  # 0 = accept any accuracy


@dataclass
class TriggerConfig:
    language: str = "en-US"
    use_distress_keywords: bool = False
    restart_delay_s: float = 0.5


@dataclass
class AlertConfig:
    auto_expire_s: float = 0.0  # 0 = alerts stay live until resolved
    check_in_default_s: float = 900.0


@dataclass
class UpdatesConfig:
    backend: str = "push"  # "push" or "poll"
    poll_interval_s: float = 3.0


@dataclass
class TransportConfig:
    backend: str = "memory"  # "memory" or "file"
    base_dir: str = "data/transport"


@dataclass
class SettingsConfig:
    path: str = ""  # empty = in-memory settings


@dataclass
class DeviceConfig:
    backend: str = "simulated"
    start_lat: float = 45.5017
    start_lng: float = -73.5673
    watch_interval_s: float = 2.0


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    location: LocationConfig = field(default_factory=LocationConfig)
    trigger: TriggerConfig = field(default_factory=TriggerConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    updates: UpdatesConfig = field(default_factory=UpdatesConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    settings: SettingsConfig = field(default_factory=SettingsConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _coerce(current: object, value: str) -> object:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    for section_field in fields(config):
        section = getattr(config, section_field.name)
        for f in fields(section):
            env_key = f"GUARDIAN_{section_field.name}_{f.name}".upper()
            val = os.environ.get(env_key)
            if val is not None:
                setattr(section, f.name, _coerce(getattr(section, f.name), val))


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    # Try to load YAML
    if config_path is None:
        config_path = Path(os.environ.get("GUARDIAN_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_field in fields(config):
            values = raw.get(section_field.name)
            if not isinstance(values, dict):
                continue
            section = getattr(config, section_field.name)
            for k, v in values.items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
