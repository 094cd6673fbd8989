"""
Impact analysis and the commit path.

Previews (single, scenario, bulk) are read-only and advisory. Committing an
approved modification revalidates against current state under the
subscription's commit lock, drives the rescheduling engine, updates the
subscription terms and then broadcasts the change.
"""

import logging
import re
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Protocol, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from models import (
    ApprovalStatus, AuditRecord, BaseModificationRequest, BilingualText,
    BulkAggregate, BulkAnalysisResult, BulkFailure, BulkModificationTemplate,
    CostImplications, FreezeRecord, FreezeRequest, FreezeWindow, ImpactAnalysis,
    ImplementationRecord, ModificationScope, ModificationType, ProgramChangeRequest,
    Recommendations, RescheduleResult, RollbackRecord, ScenarioComparison,
    ScenarioOutcome, ScenarioSpec, ScheduleAdjustment, ScheduleChangeRequest,
    ScheduledSession, Severity, Stakeholder, Subscription, SubscriptionStatus,
    TherapistChangeRequest, TimelineOptions
)
from .calendar import HolidayCalendar
from .engine import ReschedulingEngine
from .errors import (
    ConflictError, InfrastructureError, ModificationError, ValidationError,
    render, translate_store_errors
)
from .locks import CommitLocks
from .notifier import (
    CACHE_KEYS, EventType, NotificationDispatcher, NotificationPayload, RealtimeNotifier
)
from .scoring import SeverityScorer
from .stores import SessionStore, SubscriptionStore
from .timeline import TimelineManager
from .validation import ValidationContext, ValidationService

logger = logging.getLogger(__name__)

SUBSCRIPTION_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]*$")


class AuthContext(Protocol):
    """Identifies who is acting, for the audit trail."""
    user_id: str


@dataclass
class StaticAuthContext:
    user_id: str = "system"


class ImpactAnalysisService:
    """
    Previews the consequences of a modification and commits approved ones.
    """

    THERAPIST_CHANGE_FEE = 50.0
    WEEKS_PER_BILLING_MONTH = 4
    MINUTES_PER_SESSION = 30
    MINUTES_PER_THERAPIST = 60
    COST_WEIGHT = 2.0
    LARGE_COST_THRESHOLD = 1000.0
    MAJOR_DISRUPTION_RATIO = 0.3
    MAX_PENDING_ANALYSES = 500

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        sessions: SessionStore,
        calendar: HolidayCalendar,
        validation: ValidationService,
        timeline: TimelineManager,
        engine: ReschedulingEngine,
        notifier: Optional[RealtimeNotifier] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        locks: Optional[CommitLocks] = None,
        scorer: Optional[SeverityScorer] = None,
        auth: Optional[AuthContext] = None
    ):
        self.subscriptions = subscriptions
        self.sessions = sessions
        self.calendar = calendar
        self.validation = validation
        self.timeline = timeline
        self.engine = engine
        self.notifier = notifier or RealtimeNotifier()
        self.dispatcher = dispatcher
        self.locks = locks or CommitLocks()
        self.scorer = scorer or SeverityScorer()
        self.auth = auth or StaticAuthContext()

        self._registry_lock = threading.Lock()
        # Analysed requests awaiting approval, oldest first.
        self._requests: "OrderedDict[str, BaseModificationRequest]" = OrderedDict()

    # --- Single analysis ---

    def analyze_modification_impact(self, request: BaseModificationRequest) -> ImpactAnalysis:
        """Read-only preview. Raises ValidationError if the subscription is unknown."""
        with translate_store_errors():
            subscription = self.subscriptions.get(request.subscription_id)
            if subscription is None:
                raise ValidationError("SUBSCRIPTION_NOT_FOUND", subscription_id=request.subscription_id)
            sessions = self.sessions.list_sessions(subscription.id)

        analysis = self._analyze(request, subscription, sessions)
        self._remember(request)
        return analysis

    def _remember(self, request: BaseModificationRequest) -> None:
        with self._registry_lock:
            self._requests[request.id] = request
            self._requests.move_to_end(request.id)
            while len(self._requests) > self.MAX_PENDING_ANALYSES:
                evicted, _ = self._requests.popitem(last=False)
                logger.debug(f"Dropped unapproved analysis {evicted}")

    def _analyze(self, request: BaseModificationRequest, subscription: Subscription,
                 sessions: List[ScheduledSession]) -> ImpactAnalysis:
        today = self.calendar.today()
        modification_type = ModificationType(request.type)

        affected = self.select_affected_sessions(request, sessions)
        remaining = [s for s in sessions if s.status.is_bookable and s.date >= today]

        therapist_ids = sorted({s.therapist_id for s in affected})
        if isinstance(request, TherapistChangeRequest) and affected:
            therapist_ids = sorted(set(therapist_ids) | {request.proposed_changes.new_therapist_id})

        disruption = len(affected) / len(remaining) if remaining else 0.0
        score = self.scorer.calculate_score(modification_type, len(affected), len(therapist_ids), disruption)
        severity = self.scorer.classify(score)
        costs = self._cost_implications(request, subscription, affected)

        analysis = ImpactAnalysis(
            modification_id=request.id,
            subscription_id=subscription.id,
            modification_type=modification_type.value,
            affected_session_count=len(affected),
            affected_therapist_count=len(therapist_ids),
            total_remaining_sessions=len(remaining),
            schedule_disruption_percentage=round(disruption * 100, 2),
            severity_score=score,
            overall_severity=severity,
            cost_implications=costs,
            stakeholder_notifications_required=self._stakeholders(modification_type, therapist_ids, costs, severity),
            estimated_adjustment_time_minutes=(self.MINUTES_PER_SESSION * len(affected)
                                               + self.MINUTES_PER_THERAPIST * len(therapist_ids)),
            affected_session_ids=[s.id for s in affected],
            affected_therapist_ids=therapist_ids
        )
        analysis.recommendations = self._recommendations(analysis, modification_type)
        return analysis

    def select_affected_sessions(self, request: BaseModificationRequest,
                                 sessions: List[ScheduledSession]) -> List[ScheduledSession]:
        """Bookable sessions the request would touch, by type and scope."""
        today = self.calendar.today()
        pool = [s for s in sessions if s.status.is_bookable]

        if isinstance(request, FreezeRequest):
            changes = request.proposed_changes
            pool = [s for s in pool if changes.start_date <= s.date <= changes.end_date]
        else:
            pool = [s for s in pool if s.date >= request.effective_date]
            if isinstance(request, TherapistChangeRequest):
                new_id = request.proposed_changes.new_therapist_id
                pool = [s for s in pool if s.therapist_id != new_id]
            elif isinstance(request, ProgramChangeRequest) and request.scope == ModificationScope.SESSIONS_ONLY:
                pool = []

        if request.scope == ModificationScope.FUTURE_ONLY:
            pool = [s for s in pool if s.date > today]

        pool.sort(key=lambda s: (s.date, s.start_time))
        return pool

    def _cost_implications(self, request: BaseModificationRequest, subscription: Subscription,
                           affected: List[ScheduledSession]) -> CostImplications:
        price = subscription.session_price
        original = subscription.sessions_remaining * price
        adjusted = original

        if isinstance(request, FreezeRequest):
            billing = self.timeline.adjust_billing_cycle(subscription, request.freeze_days)
            adjusted = original - billing.credit_issued
        elif isinstance(request, ScheduleChangeRequest):
            new_duration = request.proposed_changes.new_duration_minutes
            if new_duration is not None and affected:
                delta = 0.0
                for s in affected:
                    hourly = price / (s.duration_minutes / 60)
                    delta += hourly * (new_duration - s.duration_minutes) / 60
                adjusted = original + delta
        elif isinstance(request, TherapistChangeRequest):
            if affected:
                adjusted = original + self.THERAPIST_CHANGE_FEE
        elif isinstance(request, ProgramChangeRequest):
            changes = request.proposed_changes
            new_price = changes.new_session_price if changes.new_session_price is not None else price
            new_total = changes.new_sessions_total if changes.new_sessions_total is not None else subscription.sessions_total
            adjusted = max(new_total - subscription.sessions_completed, 0) * new_price
            if changes.new_sessions_per_week is not None and changes.new_sessions_total is None:
                frequency_delta = changes.new_sessions_per_week - subscription.sessions_per_week
                adjusted += frequency_delta * new_price * self.WEEKS_PER_BILLING_MONTH

        net = round(adjusted - original, 2)
        return CostImplications(
            original_projection=round(original, 2),
            adjusted_projection=round(adjusted, 2),
            additional_costs=max(net, 0.0),
            cost_savings=max(-net, 0.0),
            net_impact=net
        )

    def _stakeholders(self, modification_type: ModificationType, therapist_ids: List[str],
                      costs: CostImplications, severity: Severity) -> List[Stakeholder]:
        required = [Stakeholder.PARENT]
        if therapist_ids or modification_type == ModificationType.THERAPIST_CHANGE:
            required.append(Stakeholder.THERAPIST)
        if (costs.net_impact != 0 or severity == Severity.HIGH
                or modification_type == ModificationType.PROGRAM_CHANGE):
            required.append(Stakeholder.BILLING_ADMIN)
        return required

    def _recommendations(self, analysis: ImpactAnalysis, modification_type: ModificationType) -> Recommendations:
        actions, alternatives, risks = [], [], []

        if analysis.affected_session_count > 10:
            actions.append(BilingualText(en="Notify all stakeholders at least 48 hours before the change",
                                         ar="إشعار جميع الأطراف المعنية قبل 48 ساعة على الأقل من التغيير"))
        if analysis.affected_therapist_count > 1 or modification_type == ModificationType.THERAPIST_CHANGE:
            actions.append(BilingualText(en="Review workload for affected therapists",
                                         ar="مراجعة أعباء العمل للمعالجين المتأثرين"))
        if modification_type == ModificationType.FREEZE and analysis.affected_session_count:
            actions.append(BilingualText(en="Confirm the rescheduled sessions with the family",
                                         ar="تأكيد الجلسات المعاد جدولتها مع الأسرة"))

        if analysis.overall_severity == Severity.HIGH:
            alternatives.append(BilingualText(en="Implement the change in phases to reduce impact",
                                              ar="تنفيذ التغيير على مراحل لتقليل التأثير"))
            alternatives.append(BilingualText(en="Delay implementation to a less busy period",
                                              ar="تأجيل التنفيذ لفترة أقل ازدحاما"))

        if analysis.schedule_disruption_percentage > self.MAJOR_DISRUPTION_RATIO * 100:
            risks.append(BilingualText(en="Major schedule disruption may affect service quality",
                                       ar="اضطراب كبير في الجدولة قد يؤثر على جودة الخدمة"))
        if abs(analysis.cost_implications.net_impact) > self.LARGE_COST_THRESHOLD:
            risks.append(BilingualText(en="Significant financial impact",
                                       ar="تأثير مالي كبير على التكاليف"))

        return Recommendations(priority=analysis.overall_severity, actions=actions,
                               alternatives=alternatives, risks=risks)

    # --- Scenario mode ---

    def compare_scenarios(self, subscription_id: str, scenarios: Sequence[ScenarioSpec]) -> ScenarioComparison:
        """Analyse each candidate independently and rank them."""
        if not scenarios:
            raise ValidationError("NO_SCENARIOS")

        with translate_store_errors():
            subscription = self.subscriptions.get(subscription_id)
            if subscription is None:
                raise ValidationError("SUBSCRIPTION_NOT_FOUND", subscription_id=subscription_id)
            sessions = self.sessions.list_sessions(subscription_id)

        analyses = []
        for spec in scenarios:
            request = spec.request
            if request.subscription_id != subscription_id:
                request = request.model_copy(update={"subscription_id": subscription_id})
            analyses.append((spec, self._analyze(request, subscription, sessions)))

        max_cost = max(abs(a.cost_implications.net_impact) for _, a in analyses)
        outcomes = []
        for spec, analysis in analyses:
            normalized = abs(analysis.cost_implications.net_impact) / max_cost if max_cost else 0.0
            outcomes.append(ScenarioOutcome(
                name_en=spec.name_en,
                name_ar=spec.name_ar,
                analysis=analysis,
                normalized_cost=round(normalized, 4),
                composite_score=round(analysis.severity_score + self.COST_WEIGHT * normalized, 4)
            ))

        # min() keeps the first of equals, so input order breaks ties.
        return ScenarioComparison(
            subscription_id=subscription_id,
            scenarios=outcomes,
            recommended=min(outcomes, key=lambda o: o.composite_score),
            lowest_cost=min(outcomes, key=lambda o: o.analysis.cost_implications.net_impact),
            least_disruptive=min(outcomes, key=lambda o: (o.analysis.schedule_disruption_percentage,
                                                          o.analysis.affected_session_count)),
            fastest=min(outcomes, key=lambda o: o.analysis.estimated_adjustment_time_minutes)
        )

    # --- Bulk mode ---

    def analyze_bulk_impact(self, subscription_ids: Sequence[object],
                            template: BulkModificationTemplate,
                            batch_id: Optional[str] = None) -> BulkAnalysisResult:
        """
        One modification over many enrollments. Bad items are collected in
        failed_analyses; the batch itself never aborts.
        """
        batch_id = batch_id or f"bulk-{uuid.uuid4().hex[:8]}"
        successes: List[ImpactAnalysis] = []
        failures: List[BulkFailure] = []

        for index, raw_id in enumerate(subscription_ids):
            subscription_id = raw_id if isinstance(raw_id, str) else repr(raw_id)
            if not isinstance(raw_id, str) or not SUBSCRIPTION_ID_PATTERN.match(raw_id):
                failures.append(self._bulk_failure(subscription_id, "INVALID_SUBSCRIPTION_ID"))
                continue
            try:
                request = template.for_subscription(raw_id, f"{batch_id}-{index + 1}")
                successes.append(self.analyze_modification_impact(request))
            except PydanticValidationError as exc:
                failures.append(self._bulk_failure(subscription_id, "MALFORMED_REQUEST",
                                                   detail=str(exc.errors()[0].get("msg", ""))))
            except ModificationError as exc:
                failures.append(BulkFailure(subscription_id=subscription_id, code=exc.code,
                                            message_en=exc.message_en, message_ar=exc.message_ar))

        therapists = {t for a in successes for t in a.affected_therapist_ids}
        aggregate = BulkAggregate(
            total_enrollments=len(subscription_ids),
            successful=len(successes),
            failed=len(failures),
            total_affected_sessions=sum(a.affected_session_count for a in successes),
            total_affected_therapists=len(therapists),
            total_cost_impact=round(sum(a.cost_implications.net_impact for a in successes), 2),
            overall_severity=self.scorer.bulk_severity(a.overall_severity for a in successes),
            estimated_total_time_minutes=sum(a.estimated_adjustment_time_minutes for a in successes)
        )
        logger.info(f"Bulk {batch_id}: {aggregate.successful} analysed, {aggregate.failed} failed")
        return BulkAnalysisResult(aggregate=aggregate, successful_analyses=successes, failed_analyses=failures)

    @staticmethod
    def _bulk_failure(subscription_id: str, code: str, **params) -> BulkFailure:
        en, ar = render(code, subscription_id=subscription_id, **params)
        return BulkFailure(subscription_id=subscription_id, code=code, message_en=en, message_ar=ar)

    # --- Commit ---

    def commit_freeze(self, request: FreezeRequest, implemented_by: Optional[str] = None) -> ImplementationRecord:
        """Analyse and implement a freeze in one approved call."""
        analysis = self.analyze_modification_impact(request)
        return self.implement_modification(analysis, approval_status=ApprovalStatus.APPROVED,
                                           implemented_by=implemented_by)

    def implement_modification(
        self,
        analysis: ImpactAnalysis,
        schedule_adjustments: Optional[List[ScheduleAdjustment]] = None,
        approval_status: ApprovalStatus = ApprovalStatus.PENDING,
        implemented_by: Optional[str] = None
    ) -> ImplementationRecord:
        """
        Commit an analysed modification. Only `approved` commits; the request
        is revalidated and re-analysed against current state first.
        """
        status = ApprovalStatus(approval_status)
        if status != ApprovalStatus.APPROVED:
            raise ValidationError("NOT_APPROVED", status=status.value)
        self.engine.ledger.ensure_unused(analysis.modification_id)

        with self._registry_lock:
            request = self._requests.get(analysis.modification_id)
        if request is None:
            raise ValidationError("ANALYSIS_NOT_FOUND", modification_id=analysis.modification_id)

        actor = implemented_by or self.auth.user_id or request.requested_by
        modification_type = ModificationType(request.type)
        window = None
        if isinstance(request, FreezeRequest):
            window = (request.proposed_changes.start_date, request.proposed_changes.end_date)

        with self.locks.hold(request.subscription_id, modification_type, window):
            fresh, result, subscription = self._commit_locked(request, schedule_adjustments or [], actor)

        notifications = self._broadcast(request, fresh, result, subscription)
        record = ImplementationRecord(
            modification_id=request.id,
            subscription_id=request.subscription_id,
            implemented_at=datetime.now(),
            implemented_by=actor,
            sessions_updated=result.sessions_rescheduled,
            conflicts_detected=result.conflicts_detected,
            notifications_sent=notifications,
            rollback_token=result.rollback_token,
            new_end_date=subscription.end_date
        )
        with self._registry_lock:
            self._requests.pop(request.id, None)
        return record

    def _commit_locked(
        self,
        request: BaseModificationRequest,
        adjustments: List[ScheduleAdjustment],
        actor: str
    ) -> Tuple[ImpactAnalysis, RescheduleResult, Subscription]:
        with translate_store_errors():
            subscription = self.subscriptions.get(request.subscription_id)
            sessions = self.sessions.list_sessions(request.subscription_id) if subscription else []

        context = ValidationContext(subscription=subscription, sessions=sessions)
        with translate_store_errors():
            verdict = self.validation.validate_modification_request(request, adjustments, context)
        if not verdict.valid:
            if verdict.has_code("ACTIVE_FREEZE_EXISTS"):
                raise ConflictError("ACTIVE_FREEZE_EXISTS", details={"subscription_id": request.subscription_id})
            raise ValidationError("VALIDATION_FAILED", details={
                "errors": [issue.model_dump() for issue in verdict.errors]
            })

        fresh = self._analyze(request, subscription, sessions)
        before = subscription.model_copy(deep=True)

        if isinstance(request, FreezeRequest):
            result, updated = self._commit_freeze_sessions(request, subscription, actor)
        else:
            if not adjustments:
                affected_ids = set(fresh.affected_session_ids)
                affected = [s for s in sessions if s.id in affected_ids]
                adjustments = self._derive_adjustments(request, affected)
            result = self.engine.apply_session_adjustments(request.subscription_id, adjustments, request.id)
            updated = self._apply_terms(request, subscription)

        self.engine.ledger.attach_subscription(result.rollback_token, before, ModificationType(request.type))

        try:
            with translate_store_errors():
                self.subscriptions.save(updated)
        except InfrastructureError:
            # Sessions are already committed; put them back before reporting.
            logger.error(f"Subscription update failed for {request.id}; restoring sessions")
            self.engine.rollback(result.rollback_token)
            raise

        with translate_store_errors():
            self.subscriptions.append_audit(AuditRecord(
                modification_id=request.id,
                subscription_id=request.subscription_id,
                type=ModificationType(request.type),
                requested_by=request.requested_by,
                implemented_by=actor,
                scope=request.scope,
                proposed_changes=request.proposed_changes.model_dump(mode="json"),
                rollback_token=result.rollback_token
            ))

        logger.info(f"Committed {request.id} on {request.subscription_id}: "
                    f"{result.sessions_rescheduled} moved, {len(result.conflicts_detected)} conflicts")
        return fresh, result, updated

    def _commit_freeze_sessions(self, request: FreezeRequest, subscription: Subscription,
                                actor: str) -> Tuple[RescheduleResult, Subscription]:
        changes = request.proposed_changes
        options = TimelineOptions(
            include_weekends=changes.include_weekends,
            exclude_holidays=changes.exclude_holidays,
            freeze_start_date=changes.start_date
        )
        adjustment = self.timeline.adjust_subscription(subscription, request.freeze_days, options)

        result = self.engine.reschedule_sessions_for_freeze(
            FreezeWindow(
                subscription_id=subscription.id,
                student_id=subscription.student_id,
                freeze_start_date=changes.start_date,
                freeze_end_date=changes.end_date,
                freeze_days=request.freeze_days,
                include_weekends=changes.include_weekends,
                exclude_holidays=changes.exclude_holidays
            ),
            modification_id=request.id,
            adjustment_days=adjustment.adjustment_days
        )

        data = subscription.model_dump()
        data["freeze_days_used"] = subscription.freeze_days_used + request.freeze_days
        data["end_date"] = adjustment.new_end_date
        data["freezes"] = [f.model_dump() for f in subscription.freezes] + [FreezeRecord(
            id=f"frz_{uuid.uuid4().hex[:12]}",
            start_date=changes.start_date,
            end_date=changes.end_date,
            freeze_days=request.freeze_days,
            adjustment_days=adjustment.adjustment_days,
            reason=changes.reason,
            modification_id=request.id,
            created_by=actor,
            created_at=datetime.now()
        ).model_dump()]
        if changes.start_date <= self.calendar.today() <= changes.end_date:
            data["status"] = SubscriptionStatus.FROZEN
        return result, Subscription(**data)

    def _apply_terms(self, request: BaseModificationRequest, subscription: Subscription) -> Subscription:
        """Program-term updates; other types leave the contract untouched."""
        if not isinstance(request, ProgramChangeRequest) or request.scope == ModificationScope.SESSIONS_ONLY:
            return subscription

        changes = request.proposed_changes
        data = subscription.model_dump()
        if changes.new_program_id is not None:
            data["program_id"] = changes.new_program_id
        if changes.new_sessions_total is not None:
            data["sessions_total"] = changes.new_sessions_total
        if changes.new_sessions_per_week is not None:
            data["sessions_per_week"] = changes.new_sessions_per_week
        if changes.new_session_price is not None:
            data["session_price"] = changes.new_session_price
        if changes.new_end_date is not None:
            # Keep any extension already granted by freezes.
            extension = subscription.end_date - subscription.original_end_date
            data["original_end_date"] = changes.new_end_date
            data["end_date"] = changes.new_end_date + extension
        return Subscription(**data)

    def _derive_adjustments(self, request: BaseModificationRequest,
                            affected: List[ScheduledSession]) -> List[ScheduleAdjustment]:
        """Turn a schedule or therapist change into per-session reassignments."""
        if isinstance(request, TherapistChangeRequest):
            new_id = request.proposed_changes.new_therapist_id
            return [
                ScheduleAdjustment(session_id=s.id, new_date=s.date, new_start_time=s.start_time,
                                   new_therapist_id=new_id)
                for s in affected
            ]

        if isinstance(request, ScheduleChangeRequest):
            changes = request.proposed_changes
            weekdays = sorted({s.date.weekday() for s in affected})
            adjustments = []
            for s in affected:
                new_date = s.date
                if changes.new_weekdays:
                    # The n-th weekday of the old pattern maps to the n-th of the new one.
                    rank = weekdays.index(s.date.weekday()) % len(changes.new_weekdays)
                    week_start = s.date - timedelta(days=s.date.weekday())
                    new_date = week_start + timedelta(days=changes.new_weekdays[rank])
                    if new_date < request.effective_date:
                        new_date += timedelta(days=7)
                adjustments.append(ScheduleAdjustment(
                    session_id=s.id,
                    new_date=new_date,
                    new_start_time=changes.new_start_time or s.start_time,
                    new_room_location=changes.new_room_location,
                    new_duration_minutes=changes.new_duration_minutes
                ))
            return adjustments

        return []

    # --- Broadcast ---

    def _broadcast(self, request: BaseModificationRequest, analysis: ImpactAnalysis,
                   result: RescheduleResult, subscription: Subscription) -> int:
        """Fire-and-forget: a failure here never undoes the commit."""
        sid = subscription.id
        try:
            self.notifier.publish(sid, EventType.SUBSCRIPTION_UPDATED, {
                "status": subscription.status.value,
                "end_date": subscription.end_date.isoformat(),
                "freeze_days_used": subscription.freeze_days_used
            })
            self.notifier.publish(sid, EventType.SESSIONS_RESCHEDULED, {
                "modification_id": request.id,
                "sessions_rescheduled": result.sessions_rescheduled,
                "conflicts": [c.session_id for c in result.conflicts_detected],
                "assignments": [a.model_dump(mode="json") for a in result.new_assignments]
            })
            self.notifier.publish(sid, EventType.MODIFICATION_IMPLEMENTED, {
                "modification_id": request.id,
                "type": analysis.modification_type,
                "rollback_token": result.rollback_token
            })
            self.notifier.publish(sid, EventType.CACHE_INVALIDATED, {"keys": list(CACHE_KEYS)})
        except Exception:
            logger.exception(f"Broadcast failed for {request.id}")

        if self.dispatcher is None:
            return 0
        sent = 0
        for payload in self._notification_payloads(request, analysis, result, subscription):
            try:
                self.dispatcher.dispatch(payload)
                sent += 1
            except Exception:
                logger.exception(f"Notification to {payload.recipient_type.value} failed for {request.id}")
        return sent

    def _notification_payloads(self, request: BaseModificationRequest, analysis: ImpactAnalysis,
                               result: RescheduleResult, subscription: Subscription) -> List[NotificationPayload]:
        moved = result.sessions_rescheduled
        manual = len(result.conflicts_detected)
        end = subscription.end_date.isoformat()
        net = analysis.cost_implications.net_impact

        texts = {
            Stakeholder.PARENT: (
                "Subscription updated", "تم تحديث الاشتراك",
                f"{moved} session(s) were rescheduled. The program now ends on {end}.",
                f"تمت إعادة جدولة {moved} جلسة. ينتهي البرنامج الآن في {end}."
            ),
            Stakeholder.THERAPIST: (
                "Schedule changes", "تغييرات في الجدول",
                f"{moved} session(s) moved, {manual} need manual rescheduling.",
                f"تم نقل {moved} جلسة، و{manual} بحاجة إلى إعادة جدولة يدوية."
            ),
            Stakeholder.BILLING_ADMIN: (
                "Billing review needed", "مطلوب مراجعة الفوترة",
                f"Estimated net billing impact: {net:.2f}.",
                f"الأثر المالي الصافي المقدر: {net:.2f}."
            ),
        }

        payloads = []
        for stakeholder in analysis.stakeholder_notifications_required:
            title_en, title_ar, body_en, body_ar = texts[stakeholder]
            payloads.append(NotificationPayload(
                recipient_type=stakeholder,
                subscription_id=subscription.id,
                modification_id=request.id,
                template=f"{analysis.modification_type}_{stakeholder.value}",
                title_en=title_en,
                title_ar=title_ar,
                body_en=body_en,
                body_ar=body_ar,
                data={"severity": analysis.overall_severity.value, "new_end_date": end}
            ))
        return payloads

    # --- Rollback & resume ---

    def rollback_modification(self, modification_id: str) -> RollbackRecord:
        """
        Restore the sessions and subscription terms captured at commit time.
        Raises ConflictError while a later modification of the same subscription
        is still live: those must be rolled back first.
        """
        token = self.engine.ledger.token_for(modification_id)
        entry = self.engine.ledger.get(token) if token else None
        if entry is None or entry.consumed:
            raise ValidationError("ROLLBACK_NOT_FOUND", modification_id=modification_id)

        modification_type = entry.modification_type or ModificationType.FREEZE
        with self.locks.hold(entry.subscription_id, modification_type):
            restored = self.engine.rollback(token)
            with translate_store_errors():
                if entry.subscription_before is not None:
                    self.subscriptions.save(entry.subscription_before)
                self.subscriptions.mark_rolled_back(modification_id)

        try:
            self.notifier.publish(entry.subscription_id, EventType.MODIFICATION_ROLLED_BACK, {
                "modification_id": modification_id,
                "sessions_restored": restored
            })
            self.notifier.publish(entry.subscription_id, EventType.CACHE_INVALIDATED, {"keys": list(CACHE_KEYS)})
        except Exception:
            logger.exception(f"Broadcast failed for rollback of {modification_id}")

        return RollbackRecord(
            modification_id=modification_id,
            subscription_id=entry.subscription_id,
            sessions_restored=restored,
            rolled_back_at=datetime.now()
        )

    def resume_subscription(self, subscription_id: str) -> Subscription:
        """End the freeze in progress and reactivate the subscription. Freezes not yet started stay booked."""
        with translate_store_errors():
            verdict = self.validation.validate_resume_request(subscription_id)
        if not verdict.valid:
            first = verdict.errors[0]
            raise ValidationError(first.code, subscription_id=subscription_id)

        with self.locks.hold(subscription_id, ModificationType.FREEZE):
            with translate_store_errors():
                subscription = self.subscriptions.get(subscription_id)
                today = self.calendar.today()
                data = subscription.model_dump()
                for freeze in data["freezes"]:
                    if freeze["start_date"] <= today:
                        freeze["is_active"] = False
                data["status"] = SubscriptionStatus.ACTIVE
                resumed = Subscription(**data)
                self.subscriptions.save(resumed)

        try:
            self.notifier.publish(subscription_id, EventType.SUBSCRIPTION_UPDATED, {
                "status": resumed.status.value,
                "end_date": resumed.end_date.isoformat(),
                "freeze_days_used": resumed.freeze_days_used
            })
        except Exception:
            logger.exception(f"Broadcast failed for resume of {subscription_id}")
        return resumed
