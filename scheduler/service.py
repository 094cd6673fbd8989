"""
Public facade.

`SubscriptionModificationService` wires the components together and exposes
every operation with an `OperationResult` envelope. Expected business
outcomes never raise out of here: typed errors become `ErrorPayload`s.
"""

import logging
from typing import Any, Callable, List, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from models import (
    ApprovalStatus, BaseModificationRequest, BillingStrategy, BulkModificationTemplate,
    ErrorPayload, FreezeRequest, FreezeWindow, ImpactAnalysis, OperationResult,
    ScenarioSpec, ScheduleAdjustment, TimelineOptions, parse_modification_request
)
from .calendar import HolidayCalendar
from .config import SchedulerSettings
from .engine import ReschedulingEngine
from .errors import (
    InfrastructureError, ModificationError, PartialFailure, ValidationError,
    render, translate_store_errors
)
from .impact import AuthContext, ImpactAnalysisService
from .locks import CommitLocks
from .notifier import EventTransport, NotificationDispatcher, RealtimeNotifier, ReconnectPolicy
from .rollback import RollbackLedger
from .stores import SessionStore, SubscriptionStore
from .timeline import TimelineManager
from .validation import ValidationService

logger = logging.getLogger(__name__)

RequestInput = Union[BaseModificationRequest, dict]


class SubscriptionModificationService:
    """
    Entry point for freezes and other subscription modifications.
    """

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        sessions: SessionStore,
        calendar: Optional[HolidayCalendar] = None,
        settings: Optional[SchedulerSettings] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        transport: Optional[EventTransport] = None,
        auth: Optional[AuthContext] = None
    ):
        self.settings = settings or SchedulerSettings()
        self.calendar = calendar or HolidayCalendar(weekend_days=self.settings.weekend_days)
        self.subscriptions = subscriptions
        self.sessions = sessions

        self.timeline = TimelineManager(self.calendar, subscriptions)
        self.validation = ValidationService(self.calendar, subscriptions, sessions, self.settings)
        self.ledger = RollbackLedger()
        self.engine = ReschedulingEngine(sessions, self.timeline, self.calendar, self.ledger, self.settings)
        self.notifier = RealtimeNotifier(transport, ReconnectPolicy(
            base_delay=self.settings.reconnect_base_delay_seconds,
            max_delay=self.settings.reconnect_max_delay_seconds,
            max_attempts=self.settings.reconnect_max_attempts
        ))
        self.locks = CommitLocks()
        self.impact = ImpactAnalysisService(
            subscriptions, sessions, self.calendar, self.validation, self.timeline, self.engine,
            notifier=self.notifier, dispatcher=dispatcher, locks=self.locks, auth=auth
        )

    @classmethod
    def from_env(cls, subscriptions: SubscriptionStore, sessions: SessionStore, **kwargs) -> "SubscriptionModificationService":
        """Build with settings read from the environment (.env included)."""
        return cls(subscriptions, sessions, settings=SchedulerSettings.from_env(), **kwargs)

    # --- Envelope ---

    def _run(self, operation: str, fn: Callable[[], Any]) -> OperationResult:
        try:
            return OperationResult(success=True, data=fn())
        except InfrastructureError as exc:
            logger.error(f"{operation} failed: {exc}")
            return OperationResult(success=False, error=exc.to_payload())
        except ModificationError as exc:
            logger.info(f"{operation} rejected: {exc.code}")
            return OperationResult(success=False, error=exc.to_payload())
        except PydanticValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ()))
            detail = f"{location}: {first.get('msg', '')}" if location else first.get("msg", "")
            en, ar = render("MALFORMED_REQUEST", detail=detail)
            logger.info(f"{operation} rejected malformed input ({detail})")
            return OperationResult(success=False, error=ErrorPayload(
                code="MALFORMED_REQUEST", message_en=en, message_ar=ar,
                details={"errors": exc.errors(include_url=False, include_context=False)}
            ))

    @staticmethod
    def _request(payload: RequestInput) -> BaseModificationRequest:
        if isinstance(payload, BaseModificationRequest):
            return payload
        return parse_modification_request(payload)

    @classmethod
    def _freeze_request(cls, payload: RequestInput) -> FreezeRequest:
        if isinstance(payload, dict) and "type" not in payload:
            payload = {**payload, "type": "freeze"}
        request = cls._request(payload)
        if not isinstance(request, FreezeRequest):
            raise ValidationError("MALFORMED_REQUEST", detail="type: expected 'freeze'")
        return request

    @staticmethod
    def _adjustments(items: Optional[Sequence[Any]]) -> List[ScheduleAdjustment]:
        return [a if isinstance(a, ScheduleAdjustment) else ScheduleAdjustment.model_validate(a)
                for a in items or []]

    # --- Validation & timeline ---

    def validate_freeze_request(self, request: RequestInput) -> OperationResult:
        def run():
            with translate_store_errors():
                return self.validation.validate_freeze_request(self._freeze_request(request))
        return self._run("validate_freeze_request", run)

    def validate_modification_request(self, request: RequestInput,
                                      schedule_adjustments: Optional[Sequence[Any]] = None) -> OperationResult:
        def run():
            with translate_store_errors():
                return self.validation.validate_modification_request(
                    self._request(request), self._adjustments(schedule_adjustments)
                )
        return self._run("validate_modification_request", run)

    def calculate_new_end_date(self, subscription_id: str, freeze_days: int,
                               options: Union[TimelineOptions, dict, None] = None) -> OperationResult:
        def run():
            opts = options if isinstance(options, TimelineOptions) else TimelineOptions.model_validate(options or {})
            with translate_store_errors():
                return self.timeline.calculate_new_end_date(subscription_id, freeze_days, opts)
        return self._run("calculate_new_end_date", run)

    def adjust_billing_cycle(self, subscription_id: str, freeze_days: int,
                             strategy: Union[BillingStrategy, str] = BillingStrategy.PROPORTIONAL) -> OperationResult:
        def run():
            with translate_store_errors():
                subscription = self.subscriptions.get(subscription_id)
            if subscription is None:
                raise ValidationError("SUBSCRIPTION_NOT_FOUND", subscription_id=subscription_id)
            if strategy not in {s.value for s in BillingStrategy}:
                raise ValidationError("INVALID_VALUE", field="strategy")
            return self.timeline.adjust_billing_cycle(subscription, freeze_days, BillingStrategy(strategy))
        return self._run("adjust_billing_cycle", run)

    # --- Rescheduling ---

    def reschedule_sessions_for_freeze(self, window: Union[FreezeWindow, dict],
                                       modification_id: Optional[str] = None) -> OperationResult:
        def run():
            freeze = window if isinstance(window, FreezeWindow) else FreezeWindow.model_validate(window)
            return self.engine.reschedule_sessions_for_freeze(freeze, modification_id=modification_id)
        return self._run("reschedule_sessions_for_freeze", run)

    # --- Impact analysis ---

    def analyze_modification_impact(self, request: RequestInput) -> OperationResult:
        return self._run("analyze_modification_impact",
                         lambda: self.impact.analyze_modification_impact(self._request(request)))

    def compare_scenarios(self, subscription_id: str, scenarios: Sequence[Any]) -> OperationResult:
        def run():
            specs = [s if isinstance(s, ScenarioSpec) else ScenarioSpec.model_validate(s) for s in scenarios]
            return self.impact.compare_scenarios(subscription_id, specs)
        return self._run("compare_scenarios", run)

    def analyze_bulk_impact(self, subscription_ids: Sequence[Any],
                            template: Union[BulkModificationTemplate, dict]) -> OperationResult:
        """
        Per-item failures are reported inside the data. Only a batch where
        nothing succeeded is flagged as unsuccessful, and it still carries
        the failure list.
        """
        outcome = self._run("analyze_bulk_impact", lambda: self.impact.analyze_bulk_impact(
            subscription_ids,
            template if isinstance(template, BulkModificationTemplate)
            else BulkModificationTemplate.model_validate(template)
        ))
        if outcome.success and subscription_ids and outcome.data.aggregate.successful == 0:
            failure = PartialFailure("BULK_ALL_FAILED", count=len(subscription_ids))
            return OperationResult(success=False, data=outcome.data, error=failure.to_payload())
        return outcome

    # --- Commit ---

    def implement_modification(
        self,
        analysis: Union[ImpactAnalysis, dict],
        schedule_adjustments: Optional[Sequence[Any]] = None,
        approval_status: Union[ApprovalStatus, str] = ApprovalStatus.PENDING,
        implemented_by: Optional[str] = None
    ) -> OperationResult:
        def run():
            parsed = analysis if isinstance(analysis, ImpactAnalysis) else ImpactAnalysis.model_validate(analysis)
            if approval_status not in {s.value for s in ApprovalStatus}:
                raise ValidationError("INVALID_VALUE", field="approval_status")
            return self.impact.implement_modification(
                parsed, self._adjustments(schedule_adjustments),
                approval_status=ApprovalStatus(approval_status), implemented_by=implemented_by
            )
        return self._run("implement_modification", run)

    def freeze_subscription(self, request: RequestInput, implemented_by: Optional[str] = None) -> OperationResult:
        return self._run("freeze_subscription",
                         lambda: self.impact.commit_freeze(self._freeze_request(request), implemented_by))

    def rollback_modification(self, modification_id: str) -> OperationResult:
        return self._run("rollback_modification", lambda: self.impact.rollback_modification(modification_id))

    def resume_subscription(self, subscription_id: str) -> OperationResult:
        return self._run("resume_subscription", lambda: self.impact.resume_subscription(subscription_id))

    def get_modification_history(self, subscription_id: str) -> OperationResult:
        def run():
            with translate_store_errors():
                return self.subscriptions.list_audit(subscription_id)
        return self._run("get_modification_history", run)

    # --- Realtime ---

    def subscribe_to_subscription(self, subscription_id: str,
                                  callback: Callable[[Any], None]) -> OperationResult:
        """`data` is the unsubscribe function."""
        return self._run("subscribe_to_subscription",
                         lambda: self.notifier.subscribe(subscription_id, callback))
