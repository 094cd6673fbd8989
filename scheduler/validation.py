"""
Business-rule gate for freezes and modifications.

Every rule violation is returned as a `ValidationIssue`; nothing in here
raises for an invalid request. Store failures still propagate.
"""

import logging
from dataclasses import dataclass, field
from datetime import date as date_type
from typing import Any, List, Optional

from models import (
    BaseModificationRequest, FreezeRequest, ModificationScope,
    ProgramChangeRequest, ScheduleAdjustment, ScheduleChangeRequest,
    ScheduledSession, SessionStatus, Subscription, SubscriptionStatus,
    TherapistChangeRequest, ValidationIssue, ValidationResult
)
from .calendar import HolidayCalendar
from .config import SchedulerSettings
from .errors import render
from .stores import SessionStore, SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass
class ValidationContext:
    """Optional preloaded state; missing pieces are read from the stores."""
    subscription: Optional[Subscription] = None
    sessions: Optional[List[ScheduledSession]] = None


@dataclass
class _Collector:
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    def error(self, field_name: str, code: str, **params: Any) -> None:
        en, ar = render(code, **params)
        self.errors.append(ValidationIssue(field=field_name, code=code, message_en=en, message_ar=ar))

    def warn(self, field_name: str, code: str, **params: Any) -> None:
        en, ar = render(code, **params)
        self.warnings.append(ValidationIssue(
            field=field_name, code=code, message_en=en, message_ar=ar, severity="warning"
        ))

    def result(self) -> ValidationResult:
        return ValidationResult(valid=not self.errors, errors=self.errors, warnings=self.warnings)


class ValidationService:
    """
    Checks freeze and modification requests against the current subscription.
    """

    def __init__(
        self,
        calendar: HolidayCalendar,
        subscriptions: SubscriptionStore,
        sessions: SessionStore,
        settings: Optional[SchedulerSettings] = None
    ):
        self.calendar = calendar
        self.subscriptions = subscriptions
        self.sessions = sessions
        self.settings = settings or SchedulerSettings()

    # --- Freeze ---

    def validate_freeze_request(
        self,
        request: FreezeRequest,
        context: Optional[ValidationContext] = None
    ) -> ValidationResult:
        context = context or ValidationContext()
        issues = _Collector()
        changes = request.proposed_changes
        today = self.calendar.today()

        self._check_reason(changes.reason, issues)

        range_ok = changes.start_date <= changes.end_date
        if not range_ok:
            issues.error("end_date", "INVALID_RANGE")

        if changes.start_date < today:
            issues.error("start_date", "DATE_IN_PAST")
        elif (changes.start_date - today).days < self.settings.advance_notice_days:
            issues.warn("start_date", "INSUFFICIENT_NOTICE", days=self.settings.advance_notice_days)

        freeze_days = changes.freeze_days
        if range_ok:
            if freeze_days < self.settings.min_freeze_days:
                issues.error("end_date", "FREEZE_TOO_SHORT", days=self.settings.min_freeze_days)
            elif freeze_days > self.settings.max_freeze_days:
                issues.error("end_date", "FREEZE_TOO_LONG", days=self.settings.max_freeze_days)

        subscription = context.subscription or self.subscriptions.get(request.subscription_id)
        if subscription is None:
            issues.error("subscription_id", "SUBSCRIPTION_NOT_FOUND", subscription_id=request.subscription_id)
            return issues.result()

        self._check_status(subscription, today, issues, allowed=(SubscriptionStatus.ACTIVE,))

        if changes.end_date > subscription.end_date:
            issues.error("end_date", "BEYOND_SUBSCRIPTION")

        self._check_allowance(subscription, freeze_days, issues)

        if any(f.overlaps(changes.start_date, changes.end_date) for f in subscription.active_freezes()):
            issues.error("start_date", "ACTIVE_FREEZE_EXISTS")

        if range_ok:
            sessions = context.sessions
            if sessions is None:
                sessions = self.sessions.list_sessions(subscription.id)
            in_window = [
                s for s in sessions
                if s.status.is_bookable and changes.start_date <= s.date <= changes.end_date
            ]
            if in_window:
                issues.warn("sessions", "SESSIONS_REQUIRE_RESCHEDULING", count=len(in_window))

        result = issues.result()
        if not result.valid:
            logger.info(f"Freeze {request.id} rejected: {[e.code for e in result.errors]}")
        return result

    # --- Other modifications ---

    def validate_modification_request(
        self,
        request: BaseModificationRequest,
        adjustments: Optional[List[ScheduleAdjustment]] = None,
        context: Optional[ValidationContext] = None
    ) -> ValidationResult:
        """
        Referential integrity, scope consistency and type-specific checks.
        Freeze requests are routed to the freeze rules.
        """
        context = context or ValidationContext()
        if isinstance(request, FreezeRequest):
            freeze_result = self.validate_freeze_request(request, context)
            if adjustments:
                issues = _Collector(list(freeze_result.errors), list(freeze_result.warnings))
                self._check_adjustments(request.subscription_id, adjustments, issues)
                return issues.result()
            return freeze_result

        issues = _Collector()
        today = self.calendar.today()

        subscription = context.subscription or self.subscriptions.get(request.subscription_id)
        if subscription is None:
            issues.error("subscription_id", "SUBSCRIPTION_NOT_FOUND", subscription_id=request.subscription_id)
            return issues.result()

        self._check_status(subscription, today, issues,
                           allowed=(SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN))

        if request.effective_date < today:
            issues.error("effective_date", "DATE_IN_PAST")

        sessions = context.sessions
        if sessions is None:
            sessions = self.sessions.list_sessions(subscription.id)

        if request.scope == ModificationScope.SESSIONS_ONLY and isinstance(request, ProgramChangeRequest):
            issues.error("scope", "SCOPE_MISMATCH", scope=request.scope.value)
        if request.scope == ModificationScope.FUTURE_ONLY:
            if not any(s.status.is_bookable and s.date > today for s in sessions):
                issues.error("scope", "NO_FUTURE_SESSIONS")

        if isinstance(request, ScheduleChangeRequest):
            self._check_schedule_change(request, issues)
        elif isinstance(request, TherapistChangeRequest):
            self._check_therapist_change(request, sessions, issues)
        elif isinstance(request, ProgramChangeRequest):
            self._check_program_change(request, subscription, issues)

        if adjustments:
            self._check_adjustments(subscription.id, adjustments, issues)

        return issues.result()

    # --- Resume ---

    def validate_resume_request(self, subscription_id: str) -> ValidationResult:
        issues = _Collector()
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None:
            issues.error("subscription_id", "SUBSCRIPTION_NOT_FOUND", subscription_id=subscription_id)
            return issues.result()

        # Only a freeze that has begun can be resumed; future ones stay booked.
        today = self.calendar.today()
        in_progress = any(f.overlaps(today, today) for f in subscription.active_freezes())
        if subscription.status != SubscriptionStatus.FROZEN and not in_progress:
            issues.error("status", "NOT_FROZEN")

        pending = [
            s for s in self.sessions.list_sessions(subscription_id)
            if s.status == SessionStatus.REQUIRES_MANUAL_RESCHEDULE
        ]
        if pending:
            issues.warn("sessions", "PENDING_RESCHEDULES", count=len(pending))
        return issues.result()

    # --- Rule helpers ---

    def _check_reason(self, reason: str, issues: _Collector) -> None:
        text = (reason or "").strip()
        if not text:
            issues.error("reason", "REQUIRED", field="reason")
        elif len(text) < self.settings.reason_min_length:
            issues.error("reason", "REASON_TOO_SHORT", length=self.settings.reason_min_length)
        elif len(text) > self.settings.reason_max_length:
            issues.error("reason", "REASON_TOO_LONG", length=self.settings.reason_max_length)

    def _check_status(self, subscription: Subscription, today: date_type,
                      issues: _Collector, allowed) -> None:
        if subscription.status not in allowed:
            issues.error("status", "INVALID_STATUS", status=subscription.status.value)
        elif subscription.end_date < today:
            issues.error("end_date", "SUBSCRIPTION_EXPIRED")

    def _check_allowance(self, subscription: Subscription, freeze_days: int, issues: _Collector) -> None:
        requested_total = subscription.freeze_days_used + freeze_days
        if requested_total > subscription.freeze_days_allowed:
            issues.error(
                "freeze_days", "INSUFFICIENT_FREEZE_DAYS",
                available=subscription.freeze_days_available, requested=freeze_days
            )
        elif subscription.freeze_days_allowed:
            utilization = requested_total / subscription.freeze_days_allowed
            if utilization > self.settings.high_utilization_ratio:
                issues.warn("freeze_days", "HIGH_UTILIZATION", percent=round(utilization * 100))

    def _check_schedule_change(self, request: ScheduleChangeRequest, issues: _Collector) -> None:
        changes = request.proposed_changes
        if not changes.has_changes():
            issues.error("proposed_changes", "NO_CHANGES")
            return
        if changes.new_duration_minutes is not None and not 5 <= changes.new_duration_minutes <= 480:
            issues.error("new_duration_minutes", "INVALID_VALUE", field="new_duration_minutes")

    def _check_therapist_change(self, request: TherapistChangeRequest,
                                sessions: List[ScheduledSession], issues: _Collector) -> None:
        therapist_id = request.proposed_changes.new_therapist_id
        if not therapist_id:
            issues.error("new_therapist_id", "REQUIRED", field="new_therapist_id")
            return
        if not self.sessions.therapist_exists(therapist_id):
            issues.error("new_therapist_id", "THERAPIST_NOT_FOUND", therapist_id=therapist_id)
            return
        remaining = [s for s in sessions if s.status.is_bookable and s.date >= request.effective_date]
        if remaining and all(s.therapist_id == therapist_id for s in remaining):
            issues.warn("new_therapist_id", "SAME_THERAPIST")

    def _check_program_change(self, request: ProgramChangeRequest,
                              subscription: Subscription, issues: _Collector) -> None:
        changes = request.proposed_changes
        if not changes.has_changes():
            issues.error("proposed_changes", "NO_CHANGES")
            return
        if changes.new_sessions_total is not None and changes.new_sessions_total < subscription.sessions_completed:
            issues.error("new_sessions_total", "INVALID_VALUE", field="new_sessions_total")
        if changes.new_sessions_per_week is not None and not 1 <= changes.new_sessions_per_week <= 7:
            issues.error("new_sessions_per_week", "INVALID_VALUE", field="new_sessions_per_week")
        if changes.new_session_price is not None and changes.new_session_price < 0:
            issues.error("new_session_price", "INVALID_VALUE", field="new_session_price")
        if changes.new_end_date is not None and changes.new_end_date < subscription.start_date:
            issues.error("new_end_date", "INVALID_VALUE", field="new_end_date")

    def _check_adjustments(self, subscription_id: str, adjustments: List[ScheduleAdjustment],
                           issues: _Collector) -> None:
        for adjustment in adjustments:
            session = self.sessions.get_session(adjustment.session_id)
            if session is None:
                issues.error("schedule_adjustments", "SESSION_NOT_FOUND", session_id=adjustment.session_id)
                continue
            if session.subscription_id != subscription_id:
                issues.error("schedule_adjustments", "SESSION_NOT_IN_SUBSCRIPTION", session_id=adjustment.session_id)
            if adjustment.new_therapist_id and not self.sessions.therapist_exists(adjustment.new_therapist_id):
                issues.error("schedule_adjustments", "THERAPIST_NOT_FOUND", therapist_id=adjustment.new_therapist_id)
