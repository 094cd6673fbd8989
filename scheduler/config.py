"""
Runtime configuration for the freeze scheduler.

Values come from environment variables (a local .env file is loaded with
python-dotenv first) and fall back to the defaults below.
"""

import os
from datetime import time
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_time(name: str, default: str) -> time:
    return time.fromisoformat(os.getenv(name, default))


class SchedulerSettings(BaseModel):
    """Tunable limits for validation, rescheduling and notification."""

    # --- Store Access ---
    store_timeout_seconds: float = Field(default=5.0, gt=0)

    # --- Freeze Rules ---
    min_freeze_days: int = Field(default=1, ge=0)
    max_freeze_days: int = Field(default=30, ge=1)
    advance_notice_days: int = Field(default=1, ge=0)
    reason_min_length: int = Field(default=10, ge=0)
    reason_max_length: int = Field(default=500, ge=1)
    high_utilization_ratio: float = Field(default=0.8, gt=0, le=1)

    # --- Rescheduling ---
    search_horizon_days: int = Field(default=14, ge=1)
    clinic_open: time = Field(default=time(8, 0))
    clinic_close: time = Field(default=time(18, 0))
    slot_step_minutes: int = Field(default=30, ge=5)
    weekend_days: List[int] = Field(default_factory=lambda: [5, 6], description="0=Monday, 6=Sunday")
    batch_ceiling_ms: float = Field(default=5000.0, gt=0)

    # --- Realtime ---
    reconnect_base_delay_seconds: float = Field(default=1.0, gt=0)
    reconnect_max_delay_seconds: float = Field(default=30.0, gt=0)
    reconnect_max_attempts: int = Field(default=5, ge=0)

    @field_validator('weekend_days')
    @classmethod
    def validate_weekend_days(cls, v):
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("Weekend days must be between 0 (Monday) and 6 (Sunday)")
        return sorted(set(v))

    @model_validator(mode='after')
    def validate_ranges(self):
        if self.min_freeze_days > self.max_freeze_days:
            raise ValueError("min_freeze_days cannot exceed max_freeze_days")
        if self.reason_min_length > self.reason_max_length:
            raise ValueError("reason_min_length cannot exceed reason_max_length")
        if self.clinic_close <= self.clinic_open:
            raise ValueError("clinic_close must be after clinic_open")
        return self

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "SchedulerSettings":
        """Build settings from the process environment."""
        if load_env_file:
            load_dotenv()

        weekend_raw = os.getenv("FREEZE_WEEKEND_DAYS", "5,6")
        return cls(
            store_timeout_seconds=_env_float("FREEZE_STORE_TIMEOUT_SECONDS", 5.0),
            min_freeze_days=_env_int("FREEZE_MIN_DAYS", 1),
            max_freeze_days=_env_int("FREEZE_MAX_DAYS", 30),
            advance_notice_days=_env_int("FREEZE_ADVANCE_NOTICE_DAYS", 1),
            reason_min_length=_env_int("FREEZE_REASON_MIN_LENGTH", 10),
            reason_max_length=_env_int("FREEZE_REASON_MAX_LENGTH", 500),
            high_utilization_ratio=_env_float("FREEZE_HIGH_UTILIZATION_RATIO", 0.8),
            search_horizon_days=_env_int("FREEZE_SEARCH_HORIZON_DAYS", 14),
            clinic_open=_env_time("FREEZE_CLINIC_OPEN", "08:00"),
            clinic_close=_env_time("FREEZE_CLINIC_CLOSE", "18:00"),
            slot_step_minutes=_env_int("FREEZE_SLOT_STEP_MINUTES", 30),
            weekend_days=[int(d) for d in weekend_raw.split(",") if d.strip()],
            batch_ceiling_ms=_env_float("FREEZE_BATCH_CEILING_MS", 5000.0),
            reconnect_base_delay_seconds=_env_float("FREEZE_RECONNECT_BASE_DELAY", 1.0),
            reconnect_max_delay_seconds=_env_float("FREEZE_RECONNECT_MAX_DELAY", 30.0),
            reconnect_max_attempts=_env_int("FREEZE_RECONNECT_MAX_ATTEMPTS", 5),
        )
