"""
Data models package for the Therapy Freeze Scheduler.

This package exports the three core pillars of the data architecture:
1. Contract (Subscription, FreezeRecord)
2. Calendar (ScheduledSession)
3. Change & Outcome (ModificationRequest variants, ImpactAnalysis, RescheduleResult)
"""

from .subscription import (
    Subscription,
    SubscriptionStatus,
    FreezeRecord
)

from .session import (
    ScheduledSession,
    SessionStatus
)

from .modification import (
    ModificationType,
    ModificationScope,
    ApprovalStatus,
    FreezeChanges,
    ScheduleChanges,
    TherapistChanges,
    ProgramChanges,
    ScheduleAdjustment,
    BaseModificationRequest,
    FreezeRequest,
    ScheduleChangeRequest,
    TherapistChangeRequest,
    ProgramChangeRequest,
    ModificationRequest,
    parse_modification_request,
    ScenarioSpec,
    BulkModificationTemplate,
    AuditRecord
)

from .analysis import (
    Severity,
    Stakeholder,
    BillingStrategy,
    TimelineOptions,
    TimelineAdjustment,
    BillingAdjustment,
    ValidationIssue,
    ValidationResult,
    FreezeWindow,
    ConflictRecord,
    SessionAssignment,
    RescheduleResult,
    CostImplications,
    BilingualText,
    Recommendations,
    ImpactAnalysis,
    ScenarioOutcome,
    ScenarioComparison,
    BulkFailure,
    BulkAggregate,
    BulkAnalysisResult,
    ImplementationRecord,
    RollbackRecord,
    ErrorPayload,
    OperationResult
)

__all__ = [
    # --- Contract Models ---
    "Subscription",
    "SubscriptionStatus",
    "FreezeRecord",

    # --- Calendar Models ---
    "ScheduledSession",
    "SessionStatus",

    # --- Modification Models ---
    "ModificationType",
    "ModificationScope",
    "ApprovalStatus",
    "FreezeChanges",
    "ScheduleChanges",
    "TherapistChanges",
    "ProgramChanges",
    "ScheduleAdjustment",
    "BaseModificationRequest",
    "FreezeRequest",
    "ScheduleChangeRequest",
    "TherapistChangeRequest",
    "ProgramChangeRequest",
    "ModificationRequest",
    "parse_modification_request",
    "ScenarioSpec",
    "BulkModificationTemplate",
    "AuditRecord",

    # --- Output Models ---
    "Severity",
    "Stakeholder",
    "BillingStrategy",
    "TimelineOptions",
    "TimelineAdjustment",
    "BillingAdjustment",
    "ValidationIssue",
    "ValidationResult",
    "FreezeWindow",
    "ConflictRecord",
    "SessionAssignment",
    "RescheduleResult",
    "CostImplications",
    "BilingualText",
    "Recommendations",
    "ImpactAnalysis",
    "ScenarioOutcome",
    "ScenarioComparison",
    "BulkFailure",
    "BulkAggregate",
    "BulkAnalysisResult",
    "ImplementationRecord",
    "RollbackRecord",
    "ErrorPayload",
    "OperationResult",
]
