"""
Reschedule State Management.

This module acts as the 'Memory' of one rescheduling batch.
It tracks:
1. Every slot currently held, indexed per (therapist, date) and (room, date).
2. The assignments and conflicts produced so far in the batch.
3. Detailed failure reporting (why a session could not be placed).
"""

from datetime import date as date_type
from typing import List, Dict, Any, Iterable, Tuple
from collections import defaultdict
from dataclasses import dataclass, field

from models import ScheduledSession, SessionAssignment, ConflictRecord
# ConstraintViolation carries the refusal reason into the attempt log
from .constraints import ConstraintViolation


@dataclass
class SchedulingAttempt:
    """Record of failed placement attempts for a session."""
    session: ScheduledSession
    attempts: int = 0
    violations: List[ConstraintViolation] = field(default_factory=list)


class RescheduleState:
    """
    Maintains the mutable state of the engine during one batch.
    Earlier placements in the batch are visible to later ones.
    """

    def __init__(self):
        """Initialize empty state."""
        # Resource Indices (for near O(1) constraint checking)
        self.therapist_index: Dict[Tuple[str, date_type], Dict[str, ScheduledSession]] = defaultdict(dict)
        self.room_index: Dict[Tuple[str, date_type], Dict[str, ScheduledSession]] = defaultdict(dict)

        # Batch Output
        self.assignments: List[SessionAssignment] = []
        self.conflicts: List[ConflictRecord] = []
        self.updated_sessions: List[ScheduledSession] = []

        # Placement attempts that found no slot
        self.failed_sessions: Dict[str, SchedulingAttempt] = {}

    def load(self, sessions: Iterable[ScheduledSession]) -> None:
        """Index every slot-holding session."""
        for session in sessions:
            if session.status.holds_slot:
                self.book(session)

    def book(self, session: ScheduledSession) -> None:
        """Occupy the session's therapist and room."""
        self.therapist_index[(session.therapist_id, session.date)][session.id] = session
        if session.room_location:
            self.room_index[(session.room_location, session.date)][session.id] = session

    def release(self, session: ScheduledSession) -> None:
        """Free the slot a session is about to leave."""
        self.therapist_index[(session.therapist_id, session.date)].pop(session.id, None)
        if session.room_location:
            self.room_index[(session.room_location, session.date)].pop(session.id, None)

    def record_assignment(self, original: ScheduledSession, moved: ScheduledSession) -> None:
        self.book(moved)
        self.updated_sessions.append(moved)
        self.assignments.append(SessionAssignment(
            session_id=moved.id,
            old_date=original.date,
            old_start_time=original.start_time,
            new_date=moved.date,
            new_start_time=moved.start_time,
            therapist_id=moved.therapist_id,
            room_location=moved.room_location
        ))

    def record_conflict(self, marked: ScheduledSession, conflict: ConflictRecord) -> None:
        self.updated_sessions.append(marked)
        self.conflicts.append(conflict)

    def record_failure(self, session: ScheduledSession, violation: ConstraintViolation) -> None:
        """
        Record a session that could not be placed.
        A session is usually checked against many slots, so reasons are aggregated.
        """
        if session.id not in self.failed_sessions:
            self.failed_sessions[session.id] = SchedulingAttempt(
                session=session,
                attempts=1,
                violations=[violation]
            )
        else:
            attempt = self.failed_sessions[session.id]
            attempt.attempts += 1
            attempt.violations.append(violation)

    # --- Query Methods (Used by constraints.py) ---

    def therapist_slots(self, therapist_id: str, date: date_type) -> List[ScheduledSession]:
        return list(self.therapist_index.get((therapist_id, date), {}).values())

    def room_slots(self, room_location: str, date: date_type) -> List[ScheduledSession]:
        return list(self.room_index.get((room_location, date), {}).values())

    # --- Reporting Methods ---

    def get_statistics(self) -> Dict[str, Any]:
        """Summary of the batch for logs and the demo report."""
        violation_counts = defaultdict(int)
        for attempt in self.failed_sessions.values():
            for v in attempt.violations:
                violation_counts[v.constraint_type] += 1

        moved_days = [(a.new_date - a.old_date).days for a in self.assignments]
        return {
            "sessions_rescheduled": len(self.assignments),
            "conflicts_detected": len(self.conflicts),
            "total_affected": len(self.assignments) + len(self.conflicts),
            "average_shift_days": round(sum(moved_days) / len(moved_days), 1) if moved_days else 0.0,
            "rejected_slot_checks": dict(violation_counts),
        }

    def get_failure_report(self) -> List[Dict]:
        """
        Human-readable list of sessions that need manual rescheduling and why.
        """
        report = []
        for conflict in self.conflicts:
            attempt = self.failed_sessions.get(conflict.session_id)
            violation_summary = defaultdict(int)
            sample_reason = "Unknown"
            if attempt:
                for v in attempt.violations:
                    violation_summary[v.constraint_type] += 1
                if attempt.violations:
                    sample_reason = attempt.violations[-1].reason

            report.append({
                "session_id": conflict.session_id,
                "original_date": conflict.original_date.isoformat(),
                "therapist_id": conflict.therapist_id,
                "total_attempts": attempt.attempts if attempt else 0,
                "primary_failure_cause": max(violation_summary, key=violation_summary.get) if violation_summary else None,
                "violation_breakdown": dict(violation_summary),
                "latest_reason": sample_reason
            })

        report.sort(key=lambda x: x["original_date"])
        return report

    def clear(self) -> None:
        """Drop all indices and recorded attempts."""
        self.therapist_index.clear()
        self.room_index.clear()
        self.assignments.clear()
        self.conflicts.clear()
        self.updated_sessions.clear()
        self.failed_sessions.clear()
