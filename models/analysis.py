"""
Analysis and result models for the Therapy Freeze Scheduler.

This module defines the 'Output' side of the system:
timeline projections, impact previews, reschedule outcomes,
and the uniform {success, data, error} envelope.
"""

from typing import Any, Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import date, time, datetime


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Stakeholder(str, Enum):
    PARENT = "parent"
    THERAPIST = "therapist"
    BILLING_ADMIN = "billing_admin"


class BillingStrategy(str, Enum):
    PROPORTIONAL = "proportional"
    CREDIT = "credit"
    DEFER = "defer"


# --- Timeline ---

class TimelineOptions(BaseModel):
    """Calendar rules applied when projecting a new end date."""
    exclude_holidays: bool = False
    include_weekends: bool = True
    freeze_start_date: Optional[date] = Field(
        default=None,
        description="First day of the freeze; needed to count non-working days"
    )


class TimelineAdjustment(BaseModel):
    subscription_id: str
    freeze_days: int
    adjustment_days: int
    original_end_date: date
    new_end_date: date
    calculation_method: str
    extension_percentage: float = 0.0


class BillingAdjustment(BaseModel):
    """Financial estimate handed to the external billing system."""
    subscription_id: str
    strategy: BillingStrategy
    original_amount: float
    adjusted_amount: float
    credit_issued: float
    next_billing_date: date


# --- Validation ---

class ValidationIssue(BaseModel):
    field: str
    code: str
    message_en: str
    message_ar: str
    severity: str = Field(default="error", description="'error' or 'warning'")


class ValidationResult(BaseModel):
    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    def has_code(self, code: str) -> bool:
        return any(issue.code == code for issue in self.errors)


# --- Rescheduling ---

class FreezeWindow(BaseModel):
    """Input of a freeze reschedule batch."""
    subscription_id: str
    student_id: str = ""
    freeze_start_date: date
    freeze_end_date: date
    freeze_days: Optional[int] = Field(default=None, ge=0, description="Inclusive length if omitted")
    include_weekends: bool = True
    exclude_holidays: bool = False

    @model_validator(mode='after')
    def derive_freeze_days(self):
        if self.freeze_end_date < self.freeze_start_date:
            raise ValueError("Freeze End Date cannot be before Start Date")
        if self.freeze_days is None:
            self.freeze_days = (self.freeze_end_date - self.freeze_start_date).days + 1
        return self


class ConflictRecord(BaseModel):
    """A session the engine could not place automatically."""
    session_id: str
    type: str = Field(default="no_slot_available")
    severity: Severity = Severity.HIGH
    original_date: date
    therapist_id: str
    reason_en: str
    reason_ar: str


class SessionAssignment(BaseModel):
    session_id: str
    old_date: date
    old_start_time: time
    new_date: date
    new_start_time: time
    therapist_id: str
    room_location: Optional[str] = None


class RescheduleResult(BaseModel):
    modification_id: str
    success: bool = True
    total_affected_sessions: int = 0
    sessions_rescheduled: int = 0
    conflicts_detected: List[ConflictRecord] = Field(default_factory=list)
    new_assignments: List[SessionAssignment] = Field(default_factory=list)
    rollback_token: Optional[str] = None
    execution_time_ms: float = 0.0

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "modification_id": "mod-001",
            "success": True,
            "total_affected_sessions": 2,
            "sessions_rescheduled": 2,
            "conflicts_detected": [],
            "rollback_token": "rb_5f0c1a",
            "execution_time_ms": 3.2
        }
    })


# --- Impact Analysis ---

class CostImplications(BaseModel):
    original_projection: float = 0.0
    adjusted_projection: float = 0.0
    additional_costs: float = 0.0
    cost_savings: float = 0.0
    net_impact: float = 0.0


class BilingualText(BaseModel):
    en: str
    ar: str


class Recommendations(BaseModel):
    priority: Severity = Severity.LOW
    actions: List[BilingualText] = Field(default_factory=list)
    alternatives: List[BilingualText] = Field(default_factory=list)
    risks: List[BilingualText] = Field(default_factory=list)


class ImpactAnalysis(BaseModel):
    modification_id: str
    subscription_id: str
    modification_type: str
    affected_session_count: int = 0
    affected_therapist_count: int = 0
    total_remaining_sessions: int = 0
    schedule_disruption_percentage: float = 0.0
    severity_score: float = 0.0
    overall_severity: Severity = Severity.LOW
    cost_implications: CostImplications = Field(default_factory=CostImplications)
    stakeholder_notifications_required: List[Stakeholder] = Field(default_factory=list)
    estimated_adjustment_time_minutes: int = 0
    affected_session_ids: List[str] = Field(default_factory=list)
    affected_therapist_ids: List[str] = Field(default_factory=list)
    recommendations: Recommendations = Field(default_factory=Recommendations)


class ScenarioOutcome(BaseModel):
    name_en: str
    name_ar: str = ""
    analysis: ImpactAnalysis
    normalized_cost: float = 0.0
    composite_score: float = 0.0


class ScenarioComparison(BaseModel):
    subscription_id: str
    scenarios: List[ScenarioOutcome]
    recommended: ScenarioOutcome
    lowest_cost: ScenarioOutcome
    least_disruptive: ScenarioOutcome
    fastest: ScenarioOutcome


class BulkFailure(BaseModel):
    subscription_id: str
    code: str
    message_en: str
    message_ar: str


class BulkAggregate(BaseModel):
    total_enrollments: int
    successful: int
    failed: int
    total_affected_sessions: int = 0
    total_affected_therapists: int = 0
    total_cost_impact: float = 0.0
    overall_severity: Severity = Severity.LOW
    estimated_total_time_minutes: int = 0


class BulkAnalysisResult(BaseModel):
    aggregate: BulkAggregate
    successful_analyses: List[ImpactAnalysis] = Field(default_factory=list)
    failed_analyses: List[BulkFailure] = Field(default_factory=list)


class ImplementationRecord(BaseModel):
    """Metadata captured when an approved modification is committed."""
    modification_id: str
    subscription_id: str
    implementation_status: str = "completed"
    implemented_at: datetime
    implemented_by: str
    sessions_updated: int = 0
    conflicts_detected: List[ConflictRecord] = Field(default_factory=list)
    notifications_sent: int = 0
    rollback_token: Optional[str] = None
    new_end_date: Optional[date] = None


class RollbackRecord(BaseModel):
    modification_id: str
    subscription_id: str
    rollback_status: str = "completed"
    sessions_restored: int = 0
    rolled_back_at: datetime


# --- Envelope ---

class ErrorPayload(BaseModel):
    code: str
    message_en: str
    message_ar: str
    retryable: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)


class OperationResult(BaseModel):
    """Uniform return shape of every public operation."""
    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorPayload] = None
