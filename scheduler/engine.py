"""
The Freeze Rescheduling Engine.

This module implements the core "Solver" logic for displaced sessions.
It combines three strategies:
1. Timeline Shift - Move each session by the freeze's adjustment days, keeping its weekday.
2. Forward Scan - On a clash, walk forward day by day (bounded horizon) for a free slot.
3. Manual Fallback - Sessions with no slot are flagged, never dropped.
All writes of a batch land in a single store transaction.
"""

import logging
import time
from datetime import date as date_type, datetime, time as time_type, timedelta
from typing import List, Optional, Tuple

from models import (
    ConflictRecord, FreezeWindow, ModificationType, RescheduleResult, ScheduleAdjustment,
    ScheduledSession, SessionStatus, Severity, TimelineOptions
)
from .calendar import HolidayCalendar
from .config import SchedulerSettings
from .constraints import ConflictChecker
from .errors import ConflictError, ValidationError, render, translate_store_errors
from .rollback import RollbackLedger
from .state import RescheduleState
from .stores import SessionStore
from .timeline import TimelineManager

logger = logging.getLogger(__name__)

# Violations that rule out the whole day, not just one time.
DAY_LEVEL_VIOLATIONS = ("Calendar", "FreezeWindow")


class ReschedulingEngine:
    """
    Main rescheduling engine.
    Ingests displaced sessions, outputs new assignments plus conflicts.
    """

    def __init__(
        self,
        sessions: SessionStore,
        timeline: TimelineManager,
        calendar: HolidayCalendar,
        ledger: Optional[RollbackLedger] = None,
        settings: Optional[SchedulerSettings] = None
    ):
        self.sessions = sessions
        self.timeline = timeline
        self.calendar = calendar
        self.ledger = ledger or RollbackLedger()
        self.settings = settings or SchedulerSettings()
        self.last_state: Optional[RescheduleState] = None

    # --- Public API ---

    def reschedule_sessions_for_freeze(
        self,
        window: FreezeWindow,
        modification_id: Optional[str] = None,
        adjustment_days: Optional[int] = None
    ) -> RescheduleResult:
        """
        Move every bookable session inside the freeze window.
        Raises InfrastructureError if the store fails; nothing is written then.
        """
        started = time.perf_counter()
        modification_id = modification_id or f"freeze-{window.subscription_id}-{window.freeze_start_date.isoformat()}"
        self.ledger.ensure_unused(modification_id)

        if adjustment_days is None:
            adjustment_days = self.timeline.adjustment_days(window.freeze_days, TimelineOptions(
                include_weekends=window.include_weekends,
                exclude_holidays=window.exclude_holidays,
                freeze_start_date=window.freeze_start_date
            ))

        logger.info(f"Rescheduling {window.subscription_id}: freeze {window.freeze_start_date} -> "
                    f"{window.freeze_end_date} (+{adjustment_days} days)")

        checker = ConflictChecker(
            self.calendar, self.settings.clinic_open, self.settings.clinic_close,
            blocked_ranges=[(window.freeze_start_date, window.freeze_end_date)]
        )
        state = RescheduleState()

        with translate_store_errors():
            with self.sessions.transaction() as txn:
                affected = [
                    s for s in self.sessions.list_sessions(window.subscription_id)
                    if s.status.is_bookable and window.freeze_start_date <= s.date <= window.freeze_end_date
                ]
                # Earlier sessions get first pick of the free slots.
                affected.sort(key=lambda s: (s.date, s.start_time))

                targets = [self._shifted_date(s.date, adjustment_days) for s in affected]
                if targets:
                    self._load_neighbours(state, window.freeze_start_date, max(targets))

                for session, target in zip(affected, targets):
                    state.release(session)
                    self._place(session, target, session.start_time, checker, state)

                for updated in state.updated_sessions:
                    txn.put(updated)

        token = self.ledger.record(modification_id, window.subscription_id, affected,
                                  modification_type=ModificationType.FREEZE)
        return self._build_result(modification_id, affected, state, token, started)

    def apply_session_adjustments(
        self,
        subscription_id: str,
        adjustments: List[ScheduleAdjustment],
        modification_id: str
    ) -> RescheduleResult:
        """
        Commit explicit reassignments (date, time, therapist, room, duration).
        A clashing target falls back to the same forward scan as freezes.
        """
        started = time.perf_counter()
        self.ledger.ensure_unused(modification_id)
        checker = ConflictChecker(self.calendar, self.settings.clinic_open, self.settings.clinic_close)
        state = RescheduleState()
        originals: List[ScheduledSession] = []

        with translate_store_errors():
            with self.sessions.transaction() as txn:
                ordered = sorted(adjustments, key=lambda a: (a.new_date, a.new_start_time))
                for adjustment in ordered:
                    session = txn.get(adjustment.session_id)
                    if session is None:
                        raise ValidationError("SESSION_NOT_FOUND", session_id=adjustment.session_id)
                    if session.subscription_id != subscription_id:
                        raise ValidationError("SESSION_NOT_IN_SUBSCRIPTION", session_id=adjustment.session_id)
                    originals.append(session)

                if ordered:
                    first = min(min(a.new_date for a in ordered), min(s.date for s in originals))
                    self._load_neighbours(state, first, max(a.new_date for a in ordered))

                by_id = {s.id: s for s in originals}
                for adjustment in ordered:
                    session = by_id[adjustment.session_id]
                    state.release(session)
                    self._place(
                        session, adjustment.new_date, adjustment.new_start_time, checker, state,
                        therapist_id=adjustment.new_therapist_id,
                        room_location=adjustment.new_room_location,
                        duration_minutes=adjustment.new_duration_minutes
                    )

                for updated in state.updated_sessions:
                    txn.put(updated)

        token = self.ledger.record(modification_id, subscription_id, originals)
        return self._build_result(modification_id, originals, state, token, started)

    def rollback(self, token: str) -> int:
        """
        Restore the sessions captured under `token`. Returns how many were restored.
        Only the newest live token of a subscription can be rolled back.
        """
        entry = self.ledger.get(token)
        if entry is None or entry.consumed:
            raise ValidationError("ROLLBACK_NOT_FOUND", modification_id=token)

        later = self.ledger.later_entries(token)
        if later:
            raise ConflictError(
                "LATER_MODIFICATION_EXISTS",
                details={"later_modifications": [e.modification_id for e in later]},
                modification_id=entry.modification_id
            )

        with translate_store_errors():
            with self.sessions.transaction() as txn:
                for snapshot in entry.sessions_before:
                    txn.put(snapshot.model_copy())

        self.ledger.mark_consumed(token)
        logger.info(f"Rolled back {len(entry.sessions_before)} session(s) for {entry.modification_id}")
        return len(entry.sessions_before)

    # --- Placement ---

    def _place(
        self,
        session: ScheduledSession,
        target_date: date_type,
        preferred_time: time_type,
        checker: ConflictChecker,
        state: RescheduleState,
        therapist_id: Optional[str] = None,
        room_location: Optional[str] = None,
        duration_minutes: Optional[int] = None
    ) -> bool:
        """Find a slot for one session and record the outcome in `state`."""
        duration = duration_minutes or session.duration_minutes
        slot = self._find_slot(session, target_date, preferred_time, duration, checker, state,
                               therapist_id, room_location)

        if slot is not None:
            new_date, new_time = slot
            moved = session.relocate(new_date, new_time, therapist_id=therapist_id,
                                     room_location=room_location, duration_minutes=duration_minutes)
            state.record_assignment(session, moved)
            return True

        # Fallback exhausted: flag for staff instead of dropping it.
        horizon = self.settings.search_horizon_days
        reason_en, reason_ar = render("NO_SLOT_AVAILABLE", days=horizon)
        marked = session.model_copy(update={"status": SessionStatus.REQUIRES_MANUAL_RESCHEDULE})
        state.record_conflict(marked, ConflictRecord(
            session_id=session.id,
            type="no_slot_available",
            severity=Severity.HIGH,
            original_date=session.date,
            therapist_id=therapist_id or session.therapist_id,
            reason_en=reason_en,
            reason_ar=reason_ar
        ))
        logger.warning(f"No slot for session {session.id} within {horizon} days of {target_date}")
        return False

    def _find_slot(
        self,
        session: ScheduledSession,
        target_date: date_type,
        preferred_time: time_type,
        duration: int,
        checker: ConflictChecker,
        state: RescheduleState,
        therapist_id: Optional[str],
        room_location: Optional[str]
    ) -> Optional[Tuple[date_type, time_type]]:
        """Forward scan: target day first, then each following day up to the horizon."""
        for offset in range(self.settings.search_horizon_days + 1):
            day = target_date + timedelta(days=offset)
            for candidate_time in self._generate_times_for_date(preferred_time, duration):
                violation = checker.check_slot(
                    session, day, candidate_time, state,
                    therapist_id=therapist_id, room_location=room_location, duration_minutes=duration
                )
                if violation is None:
                    return day, candidate_time
                state.record_failure(session, violation)
                if violation.constraint_type in DAY_LEVEL_VIOLATIONS:
                    break
        return None

    def _generate_times_for_date(self, preferred: time_type, duration: int) -> List[time_type]:
        """
        Start times to try on one day: the preferred time first, then every
        clinic-hours step ordered by distance from it.
        """
        open_min = self.settings.clinic_open.hour * 60 + self.settings.clinic_open.minute
        close_min = self.settings.clinic_close.hour * 60 + self.settings.clinic_close.minute
        preferred_min = preferred.hour * 60 + preferred.minute

        options = []
        for start_min in range(open_min, close_min - duration + 1, self.settings.slot_step_minutes):
            if start_min != preferred_min:
                options.append(start_min)
        options.sort(key=lambda m: (abs(m - preferred_min), m))

        times = [preferred]
        for m in options:
            times.append((datetime.min + timedelta(minutes=m)).time())
        return times

    def _shifted_date(self, original: date_type, adjustment_days: int) -> date_type:
        """Shift forward, then roll on to the original weekday if the shift broke it."""
        candidate = original + timedelta(days=adjustment_days)
        while candidate.weekday() != original.weekday():
            candidate += timedelta(days=1)
        return candidate

    def _load_neighbours(self, state: RescheduleState, first: date_type, last_target: date_type) -> None:
        """Index every booking the scan could touch."""
        horizon_end = last_target + timedelta(days=self.settings.search_horizon_days)
        state.load(self.sessions.list_sessions_between(first, horizon_end))

    # --- Helpers ---

    def _build_result(
        self,
        modification_id: str,
        affected: List[ScheduledSession],
        state: RescheduleState,
        token: str,
        started: float
    ) -> RescheduleResult:
        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > self.settings.batch_ceiling_ms:
            logger.warning(f"Batch {modification_id} took {elapsed_ms:.0f}ms for {len(affected)} sessions")

        self.last_state = state
        stats = state.get_statistics()
        logger.info(f"Batch {modification_id}: {stats['sessions_rescheduled']} moved, "
                    f"{stats['conflicts_detected']} need manual rescheduling")

        return RescheduleResult(
            modification_id=modification_id,
            success=True,
            total_affected_sessions=len(affected),
            sessions_rescheduled=len(state.assignments),
            conflicts_detected=list(state.conflicts),
            new_assignments=list(state.assignments),
            rollback_token=token,
            execution_time_ms=round(elapsed_ms, 3)
        )

