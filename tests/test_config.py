"""Tests for configuration loading."""

from __future__ import annotations

import pytest

from guardianlink.config import AppConfig, load_config
from guardianlink.devices.simulated import SimulatedSpeechProvider
from guardianlink.main import build_engine


def test_defaults_without_file(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    assert config == AppConfig()
    assert config.updates.backend == "push"
    assert config.alerts.auto_expire_s == 0


def test_yaml_values_are_applied(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "identity:\n"
        "  address: carol@example.com\n"
        "updates:\n"
        "  backend: poll\n"
        "  poll_interval_s: 1.5\n"
        "location:\n"
        "  unknown_key: 3\n"
        "logging: not-a-section\n"
    )

    config = load_config(path)

    assert config.identity.address == "carol@example.com"
    assert config.updates.backend == "poll"
    assert config.updates.poll_interval_s == 1.5
    assert not hasattr(config.location, "unknown_key")
    assert config.logging.level == "info"


def test_env_overrides_win(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  port: 9000\n")
    monkeypatch.setenv("GUARDIAN_SERVER_PORT", "9100")
    monkeypatch.setenv("GUARDIAN_TRIGGER_USE_DISTRESS_KEYWORDS", "yes")
    monkeypatch.setenv("GUARDIAN_ALERTS_AUTO_EXPIRE_S", "60")

    config = load_config(path)

    assert config.server.port == 9100
    assert config.trigger.use_distress_keywords is True
    assert config.alerts.auto_expire_s == 60.0


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("transport:\n  backend: file\n")
    monkeypatch.setenv("GUARDIAN_CONFIG", str(path))

    assert load_config().transport.backend == "file"


def test_unknown_device_backend_is_rejected():
    config = AppConfig()
    config.device.backend = "bluetooth"
    with pytest.raises(ValueError):
        build_engine(config)


def test_simulated_devices_by_default():
    engine = build_engine(AppConfig())
    assert isinstance(engine.speech, SimulatedSpeechProvider)
