"""
Subscription data models for the Therapy Freeze Scheduler.

A Subscription is the 'Contract' side of the system:
the program window, the freeze allowance and the billing terms
that every modification is measured against.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator, ConfigDict
from datetime import date, datetime


class SubscriptionStatus(str, Enum):
    """Lifecycle state of a therapy subscription."""
    ACTIVE = "active"
    FROZEN = "frozen"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FreezeRecord(BaseModel):
    """One committed freeze period in the subscription's history."""
    id: str = Field(description="Unique identifier of the freeze")
    start_date: date
    end_date: date
    freeze_days: int = Field(ge=0, description="Calendar days requested")
    adjustment_days: int = Field(default=0, ge=0, description="Days actually added to the program")
    reason: str = Field(default="", description="Documented reason for the pause")
    is_active: bool = Field(default=True, description="False once the subscription resumed")
    modification_id: Optional[str] = Field(default=None, description="Modification that created it")
    created_by: Optional[str] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("Freeze End Date cannot be before Start Date")
        return self

    def overlaps(self, start: date, end: date) -> bool:
        """True if [start, end] intersects this freeze window."""
        return self.start_date <= end and start <= self.end_date


class Subscription(BaseModel):
    """
    A student's enrollment in a multi-session therapy program.
    Mutated only through committed modifications.
    """

    # --- Core Identity ---
    id: str = Field(description="Unique identifier for the subscription")
    student_id: str = Field(min_length=1)
    program_id: str = Field(min_length=1)

    # --- Program Window ---
    start_date: date
    end_date: date = Field(description="Current (possibly extended) end date")
    original_end_date: date = Field(description="End date at enrollment, before any freeze")

    # --- Freeze Allowance ---
    freeze_days_allowed: int = Field(default=0, ge=0)
    freeze_days_used: int = Field(default=0, ge=0)
    freezes: List[FreezeRecord] = Field(default_factory=list, description="Freeze history")

    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE)

    # --- Program Terms ---
    sessions_total: int = Field(ge=0)
    sessions_completed: int = Field(default=0, ge=0)
    sessions_per_week: int = Field(default=2, ge=1, le=7)
    session_price: float = Field(default=0.0, ge=0, description="Billed amount per session")
    monthly_price: float = Field(default=0.0, ge=0, description="Billed amount per month")

    @model_validator(mode='after')
    def validate_invariants(self):
        """Freezes only extend the program and never exceed the allowance."""
        if self.freeze_days_used > self.freeze_days_allowed:
            raise ValueError("freeze_days_used cannot exceed freeze_days_allowed")
        if self.end_date < self.original_end_date:
            raise ValueError("end_date cannot be before original_end_date")
        if self.original_end_date < self.start_date:
            raise ValueError("original_end_date cannot be before start_date")
        if self.sessions_completed > self.sessions_total:
            raise ValueError("sessions_completed cannot exceed sessions_total")
        return self

    @property
    def freeze_days_available(self) -> int:
        return self.freeze_days_allowed - self.freeze_days_used

    @property
    def sessions_remaining(self) -> int:
        return self.sessions_total - self.sessions_completed

    @property
    def program_days(self) -> int:
        """Length of the original program window in days."""
        return max((self.original_end_date - self.start_date).days, 1)

    def active_freezes(self) -> List[FreezeRecord]:
        return [f for f in self.freezes if f.is_active]

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "sub-1",
            "student_id": "stu-1",
            "program_id": "prog-speech-12w",
            "start_date": "2025-05-05",
            "end_date": "2025-07-28",
            "original_end_date": "2025-07-28",
            "freeze_days_allowed": 14,
            "freeze_days_used": 0,
            "status": "active",
            "sessions_total": 24,
            "sessions_completed": 8,
            "sessions_per_week": 2,
            "session_price": 150.0,
            "monthly_price": 1200.0
        }
    })
