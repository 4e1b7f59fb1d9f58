"""Tests for config/settings.py."""

import pytest
from pydantic import ValidationError

from config import settings as settings_module
from config.settings import ServerSettings, get_settings, reset_settings
from scheduling.models import TaskStatus


def test_defaults(tmp_path):
    settings = ServerSettings(data_dir=tmp_path, _env_file=None)
    assert settings.work_start_hour == 9
    assert settings.work_end_hour == 17
    assert settings.horizon_days == 7
    assert settings.granularity_minutes == 60
    assert settings.excluded_statuses == []
    assert settings.strict_task_validation is False
    assert settings.openai_api_key is None


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("SCHEDULER_WORK_START_HOUR", "8")
    monkeypatch.setenv("SCHEDULER_EXCLUDED_STATUSES", '["cancelled"]')
    monkeypatch.setenv("SCHEDULER_DATA_DIR", str(tmp_path))
    settings = ServerSettings(_env_file=None)
    assert settings.work_start_hour == 8
    assert settings.excluded_statuses == [TaskStatus.CANCELLED]
    assert settings.data_dir == tmp_path


def test_rejects_inverted_work_window(tmp_path):
    with pytest.raises(ValidationError):
        ServerSettings(data_dir=tmp_path, work_start_hour=18, work_end_hour=9, _env_file=None)


def test_get_settings_is_a_singleton(monkeypatch):
    monkeypatch.setattr(settings_module, "_settings", None)
    first = get_settings()
    assert get_settings() is first
    reset_settings()
    assert settings_module._settings is None
