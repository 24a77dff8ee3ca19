import importlib
import sys
from datetime import time

import pytest


def reload_config_module():
    config_module = sys.modules.get("perkcycle.config")
    if config_module:
        config_module.get_settings.cache_clear()
        sys.modules.pop("perkcycle.config", None)
    return importlib.import_module("perkcycle.config")


def test_defaults(monkeypatch):
    monkeypatch.delenv("UNDO_WINDOW_SECONDS", raising=False)
    config_module = reload_config_module()

    settings = config_module.Settings()

    assert settings.undo_window_seconds == 4.0
    assert settings.reminder_time == time(10, 0)
    assert settings.reminder_days_for(1) == [1, 3, 7]
    assert settings.reminder_days_for(3) == [7, 14]
    assert settings.reminder_days_for(2) == [7]


def test_reminder_days_from_environment(monkeypatch):
    monkeypatch.setenv("MONTHLY_REMINDER_DAYS", "[5, 2, 2]")
    config_module = reload_config_module()

    assert config_module.Settings().monthly_reminder_days == [2, 5]


def test_non_positive_reminder_days_rejected(monkeypatch):
    monkeypatch.setenv("QUARTERLY_REMINDER_DAYS", "[0, 7]")
    config_module = reload_config_module()

    with pytest.raises(Exception, match="positive"):
        config_module.Settings()


def test_undo_window_must_be_positive(monkeypatch):
    monkeypatch.setenv("UNDO_WINDOW_SECONDS", "0")
    config_module = reload_config_module()

    with pytest.raises(Exception, match="undo_window_seconds"):
        config_module.Settings()
