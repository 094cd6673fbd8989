"""
Scheduled session data models for the Therapy Freeze Scheduler.

This module defines the unit the rescheduling engine moves around:
a therapist + room reservation on a specific date and time.
"""

from typing import Optional
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import date as date_type, time as time_type, datetime, timedelta


class SessionStatus(str, Enum):
    """Status of a scheduled session."""
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    REQUIRES_MANUAL_RESCHEDULE = "requires_manual_reschedule"

    @property
    def is_bookable(self) -> bool:
        """Sessions that are still expected to take place and may be moved."""
        return self in (SessionStatus.SCHEDULED, SessionStatus.RESCHEDULED)

    @property
    def holds_slot(self) -> bool:
        """Every non-cancelled session occupies its therapist and room."""
        return self != SessionStatus.CANCELLED


class ScheduledSession(BaseModel):
    """
    A booked therapy session.
    end_time is always start_time + duration_minutes.
    """

    # --- Core Scheduling Data ---
    id: str = Field(description="Unique identifier of the session")
    subscription_id: str = Field(description="Owning subscription")
    date: date_type = Field(description="Calendar date")
    start_time: time_type = Field(description="Start of the session")
    end_time: Optional[time_type] = Field(default=None, description="Derived from duration if omitted")
    duration_minutes: int = Field(ge=5, le=480, description="Length of the session")

    # --- Resource Allocation ---
    therapist_id: str = Field(min_length=1, description="Assigned therapist")
    room_location: Optional[str] = Field(default=None, description="Assigned room")

    status: SessionStatus = Field(default=SessionStatus.SCHEDULED, description="Current state")

    # --- Reschedule Tracking ---
    rescheduled_from: Optional[date_type] = Field(
        default=None,
        description="Original date if the engine moved this session"
    )

    @model_validator(mode='after')
    def derive_end_time(self):
        """Keep end_time consistent with duration."""
        expected = (datetime.combine(self.date, self.start_time)
                    + timedelta(minutes=self.duration_minutes))
        if expected.date() != self.date:
            raise ValueError("Session cannot run past midnight")
        if self.end_time is None:
            self.end_time = expected.time()
        elif self.end_time != expected.time():
            raise ValueError("end_time must equal start_time + duration_minutes")
        return self

    @property
    def start_minute(self) -> int:
        return self.start_time.hour * 60 + self.start_time.minute

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration_minutes

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time)

    def relocate(
        self,
        new_date: date_type,
        new_start: time_type,
        therapist_id: Optional[str] = None,
        room_location: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> "ScheduledSession":
        """Return a re-validated copy moved to a new slot."""
        data = self.model_dump()
        data.update(
            date=new_date,
            start_time=new_start,
            end_time=None,
            status=SessionStatus.RESCHEDULED,
            rescheduled_from=self.rescheduled_from or self.date,
        )
        if therapist_id is not None:
            data["therapist_id"] = therapist_id
        if room_location is not None:
            data["room_location"] = room_location
        if duration_minutes is not None:
            data["duration_minutes"] = duration_minutes
        return ScheduledSession(**data)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "ses-001",
            "subscription_id": "sub-1",
            "date": "2025-06-02",
            "start_time": "10:00:00",
            "end_time": "10:45:00",
            "duration_minutes": 45,
            "therapist_id": "T1",
            "room_location": "Room A",
            "status": "scheduled"
        }
    })
