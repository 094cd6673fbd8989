"""
Modification request models for the Therapy Freeze Scheduler.

Requests are a closed set of variants discriminated by the `type` field.
Raw payloads are parsed once at the boundary with `parse_modification_request`
so nothing downstream ever sees an untyped dict.
"""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator, ConfigDict
from datetime import date, time


class ModificationType(str, Enum):
    FREEZE = "freeze"
    SCHEDULE_CHANGE = "schedule_change"
    THERAPIST_CHANGE = "therapist_change"
    PROGRAM_CHANGE = "program_change"


class ModificationScope(str, Enum):
    """Which part of the subscription a modification touches."""
    ALL = "all"
    SESSIONS_ONLY = "sessions_only"
    FUTURE_ONLY = "future_only"


class ApprovalStatus(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"


# --- Proposed Changes (one shape per variant) ---

class FreezeChanges(BaseModel):
    start_date: date
    end_date: date
    reason: str = Field(default="", description="Documentation for the freeze")
    include_weekends: bool = Field(default=True, description="Weekend days count as used freeze days")
    exclude_holidays: bool = Field(default=False, description="Skip holidays when landing the new end date")

    @property
    def freeze_days(self) -> int:
        """Inclusive calendar length of the window (0 for an inverted range)."""
        return max((self.end_date - self.start_date).days + 1, 0)


class ScheduleChanges(BaseModel):
    new_weekdays: Optional[List[int]] = Field(default=None, description="0=Monday, 6=Sunday")
    new_start_time: Optional[time] = None
    new_duration_minutes: Optional[int] = None
    new_room_location: Optional[str] = None

    @field_validator('new_weekdays')
    @classmethod
    def validate_weekdays(cls, v):
        if v is not None:
            if not v:
                raise ValueError("new_weekdays cannot be empty")
            if any(d < 0 or d > 6 for d in v):
                raise ValueError("Weekdays must be between 0 (Monday) and 6 (Sunday)")
        return v

    def has_changes(self) -> bool:
        return any(v is not None for v in (
            self.new_weekdays, self.new_start_time,
            self.new_duration_minutes, self.new_room_location
        ))


class TherapistChanges(BaseModel):
    new_therapist_id: str = Field(default="", description="Therapist taking over the sessions")


class ProgramChanges(BaseModel):
    new_program_id: Optional[str] = None
    new_sessions_total: Optional[int] = None
    new_sessions_per_week: Optional[int] = None
    new_session_price: Optional[float] = None
    new_end_date: Optional[date] = None

    def has_changes(self) -> bool:
        return any(v is not None for v in (
            self.new_program_id, self.new_sessions_total, self.new_sessions_per_week,
            self.new_session_price, self.new_end_date
        ))


class ScheduleAdjustment(BaseModel):
    """An explicit reassignment of one session, supplied at implementation time."""
    session_id: str
    new_date: date
    new_start_time: time
    new_therapist_id: Optional[str] = None
    new_room_location: Optional[str] = None
    new_duration_minutes: Optional[int] = Field(default=None, ge=5, le=480)


# --- Request Variants ---

class BaseModificationRequest(BaseModel):
    """Fields shared by every modification variant."""
    id: str = Field(min_length=1, description="Modification identifier")
    subscription_id: str = Field(description="Target subscription")
    effective_date: date = Field(description="First date the change applies to")
    requested_by: str = Field(default="system", description="Requester, for the audit trail")
    scope: ModificationScope = Field(default=ModificationScope.ALL)


class FreezeRequest(BaseModificationRequest):
    type: Literal["freeze"] = "freeze"
    effective_date: Optional[date] = Field(default=None, description="Defaults to the freeze start")
    proposed_changes: FreezeChanges

    @model_validator(mode='after')
    def default_effective_date(self):
        # A freeze takes effect on its first day.
        if self.effective_date is None:
            self.effective_date = self.proposed_changes.start_date
        return self

    @property
    def freeze_days(self) -> int:
        return self.proposed_changes.freeze_days

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "mod-001",
            "type": "freeze",
            "subscription_id": "sub-1",
            "effective_date": "2025-06-01",
            "requested_by": "parent-7",
            "scope": "all",
            "proposed_changes": {
                "start_date": "2025-06-01",
                "end_date": "2025-06-07",
                "reason": "Family travel during school break",
                "include_weekends": True
            }
        }
    })


class ScheduleChangeRequest(BaseModificationRequest):
    type: Literal["schedule_change"] = "schedule_change"
    proposed_changes: ScheduleChanges


class TherapistChangeRequest(BaseModificationRequest):
    type: Literal["therapist_change"] = "therapist_change"
    proposed_changes: TherapistChanges


class ProgramChangeRequest(BaseModificationRequest):
    type: Literal["program_change"] = "program_change"
    proposed_changes: ProgramChanges


ModificationRequest = Annotated[
    Union[FreezeRequest, ScheduleChangeRequest, TherapistChangeRequest, ProgramChangeRequest],
    Field(discriminator="type"),
]

_request_adapter = TypeAdapter(ModificationRequest)


def parse_modification_request(payload: dict) -> BaseModificationRequest:
    """
    Boundary parser. Raises pydantic.ValidationError for malformed payloads.
    """
    return _request_adapter.validate_python(payload)


class ScenarioSpec(BaseModel):
    """One candidate change-set for scenario comparison."""
    name_en: str
    name_ar: str = ""
    request: ModificationRequest


class BulkModificationTemplate(BaseModel):
    """A modification shared by many subscriptions (ids filled in per item)."""
    type: ModificationType
    proposed_changes: dict = Field(default_factory=dict)
    effective_date: date
    requested_by: str = "system"
    scope: ModificationScope = ModificationScope.ALL

    def for_subscription(self, subscription_id: str, modification_id: str) -> BaseModificationRequest:
        return parse_modification_request({
            "id": modification_id,
            "type": self.type.value,
            "subscription_id": subscription_id,
            "effective_date": self.effective_date,
            "requested_by": self.requested_by,
            "scope": self.scope.value,
            "proposed_changes": self.proposed_changes,
        })


class AuditRecord(BaseModel):
    """Persisted trace of a committed (or rolled back) modification."""
    modification_id: str
    subscription_id: str
    type: ModificationType
    requested_by: str
    implemented_by: str
    scope: ModificationScope
    proposed_changes: dict
    rollback_token: Optional[str] = None
    rolled_back: bool = False
