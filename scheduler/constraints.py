"""
Slot checks for placing a session on a date and time.

This module answers the binary question: "Can Session X move to Slot Y?"
It enforces physical reality (a therapist or room can't be in two sessions
at once) and the clinic calendar.
"""

from datetime import date as date_type, time as time_type
from typing import TYPE_CHECKING, List, Optional, Tuple
from dataclasses import dataclass

from models import ScheduledSession
from .calendar import HolidayCalendar

if TYPE_CHECKING:
    from .state import RescheduleState


@dataclass
class ConstraintViolation:
    """Why a candidate slot was refused."""
    constraint_type: str  # e.g., "Therapist", "Room", "Calendar"
    reason: str
    session_id: str
    date: date_type
    start_time: time_type


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open minute ranges: StartA < EndB and StartB < EndA."""
    return a_start < b_end and b_start < a_end


class ConflictChecker:
    """
    Validates hard constraints for session placement.
    """

    def __init__(
        self,
        calendar: HolidayCalendar,
        clinic_open: time_type,
        clinic_close: time_type,
        blocked_ranges: Optional[List[Tuple[date_type, date_type]]] = None
    ):
        self.calendar = calendar
        self.open_min = clinic_open.hour * 60 + clinic_open.minute
        self.close_min = clinic_close.hour * 60 + clinic_close.minute
        # Inclusive date ranges nothing may be moved into (the freeze window)
        self.blocked_ranges = blocked_ranges or []

    def check_slot(
        self,
        session: ScheduledSession,
        date: date_type,
        start_time: time_type,
        state: "RescheduleState",
        therapist_id: Optional[str] = None,
        room_location: Optional[str] = None,
        duration_minutes: Optional[int] = None
    ) -> Optional[ConstraintViolation]:
        """
        Returns None when the slot is usable, otherwise the first violation found.
        Optional overrides describe the session after a therapist/room/duration change.
        """
        therapist_id = therapist_id or session.therapist_id
        room = room_location if room_location is not None else session.room_location
        duration = duration_minutes or session.duration_minutes

        # 1. Calendar (cheapest, filters whole days)
        violation = self._check_calendar(session, date, start_time)
        if violation: return violation

        violation = self._check_blocked(session, date, start_time)
        if violation: return violation

        start_min = start_time.hour * 60 + start_time.minute
        end_min = start_min + duration

        # 2. Opening hours (a session keeping its own time slot is grandfathered)
        keeps_slot = start_time == session.start_time and duration == session.duration_minutes
        if not keeps_slot and (start_min < self.open_min or end_min > self.close_min):
            return ConstraintViolation("ClinicHours", "Outside clinic hours", session.id, date, start_time)

        # 3. Resource overlap
        violation = self._check_overlap(
            "Therapist", session.id, date, start_time, start_min, end_min,
            state.therapist_slots(therapist_id, date)
        )
        if violation: return violation

        if room:
            violation = self._check_overlap(
                "Room", session.id, date, start_time, start_min, end_min,
                state.room_slots(room, date)
            )
            if violation: return violation

        return None

    def _check_calendar(self, session: ScheduledSession, date: date_type, start: time_type) -> Optional[ConstraintViolation]:
        if self.calendar.is_holiday(date):
            return ConstraintViolation("Calendar", f"{date} is a holiday", session.id, date, start)
        # Weekend days are closed unless the session already runs on that weekday.
        if self.calendar.is_weekend(date) and date.weekday() != session.date.weekday():
            return ConstraintViolation("Calendar", f"{date} is a weekend day", session.id, date, start)
        return None

    def _check_blocked(self, session: ScheduledSession, date: date_type, start: time_type) -> Optional[ConstraintViolation]:
        for block_start, block_end in self.blocked_ranges:
            if block_start <= date <= block_end:
                return ConstraintViolation("FreezeWindow", "Date falls inside the freeze window", session.id, date, start)
        return None

    def _check_overlap(
        self,
        kind: str,
        session_id: str,
        date: date_type,
        start: time_type,
        start_min: int,
        end_min: int,
        booked: List[ScheduledSession]
    ) -> Optional[ConstraintViolation]:
        for other in booked:
            if other.id == session_id:
                continue
            if overlaps(start_min, end_min, other.start_minute, other.end_minute):
                return ConstraintViolation(
                    kind,
                    f"Clash with {other.id} ({other.start_time.strftime('%H:%M')})",
                    session_id, date, start
                )
        return None
