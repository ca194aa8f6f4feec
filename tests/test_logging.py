"""Logging configuration."""
from __future__ import annotations

from mailroom.core.config import settings
from mailroom.utils import logger as logging_setup


def test_explicit_level_wins():
    config = logging_setup.build_logging_config("warning")

    assert config["root"]["level"] == "WARNING"
    assert config["loggers"]["mailroom"]["level"] == "WARNING"


def test_level_falls_back_to_environment(monkeypatch):
    monkeypatch.setattr(settings, "log_level", None)
    monkeypatch.setattr(settings, "environment", "production")
    assert logging_setup.resolve_level() == "INFO"

    monkeypatch.setattr(settings, "environment", "development")
    assert logging_setup.resolve_level() == "DEBUG"

    monkeypatch.setattr(settings, "log_level", "error")
    assert logging_setup.resolve_level() == "ERROR"


def test_library_loggers_are_quiet():
    config = logging_setup.build_logging_config("DEBUG")

    for name in logging_setup.QUIET_LOGGERS:
        assert config["loggers"][name]["level"] == "WARNING"
