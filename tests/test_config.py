"""
Unit tests for runtime configuration.
"""

import pytest
from datetime import time
from pydantic import ValidationError

from scheduler.config import SchedulerSettings


class TestSchedulerSettings:
    """Defaults, environment overrides and range checks."""

    def test_default_values(self):
        settings = SchedulerSettings()
        assert settings.min_freeze_days == 1
        assert settings.max_freeze_days == 30
        assert settings.reason_min_length == 10
        assert settings.search_horizon_days == 14
        assert settings.clinic_open == time(8, 0)
        assert settings.weekend_days == [5, 6]

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("FREEZE_MAX_DAYS", "21")
        monkeypatch.setenv("FREEZE_CLINIC_OPEN", "07:30")
        monkeypatch.setenv("FREEZE_WEEKEND_DAYS", "4,5")
        monkeypatch.setenv("FREEZE_STORE_TIMEOUT_SECONDS", "2.5")

        settings = SchedulerSettings.from_env(load_env_file=False)

        assert settings.max_freeze_days == 21
        assert settings.clinic_open == time(7, 30)
        assert settings.weekend_days == [4, 5]
        assert settings.store_timeout_seconds == 2.5

    def test_unset_environment_uses_defaults(self, monkeypatch):
        monkeypatch.delenv("FREEZE_MAX_DAYS", raising=False)
        assert SchedulerSettings.from_env(load_env_file=False).max_freeze_days == 30

    def test_min_above_max_rejected(self):
        with pytest.raises(ValidationError):
            SchedulerSettings(min_freeze_days=40, max_freeze_days=30)

    def test_clinic_hours_order(self):
        with pytest.raises(ValidationError):
            SchedulerSettings(clinic_open=time(18, 0), clinic_close=time(8, 0))

    def test_weekend_days_normalised(self):
        assert SchedulerSettings(weekend_days=[6, 5, 6]).weekend_days == [5, 6]
        with pytest.raises(ValidationError):
            SchedulerSettings(weekend_days=[7])
