"""
Seeded data generator for the Therapy Freeze Scheduler.
STRATEGY: one deterministic random.Random per generator, so every run with
the same seed yields the same subscriptions, sessions and holidays.
"""

import logging
import random
from datetime import date, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ValidationError

from models import ScheduledSession, Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)

# Weekly patterns a clinic actually offers (0=Monday).
WEEKLY_PATTERNS: List[Tuple[int, ...]] = [(0, 2), (1, 3), (0, 3), (2, 4), (0, 2, 4), (1,)]
SESSION_TIMES = [time(9, 0), time(10, 0), time(11, 0), time(13, 0), time(14, 0), time(15, 30)]
DURATIONS = [30, 45, 45, 60]
ROOMS = ["Room A", "Room B", "Room C", "Sensory Room"]
PROGRAMS = [
    # (program_id, weeks, monthly_price)
    ("prog-speech-8w", 8, 1200.0),
    ("prog-speech-12w", 12, 1200.0),
    ("prog-ot-12w", 12, 1400.0),
    ("prog-aba-16w", 16, 1800.0),
]


class DataGenerator:
    def __init__(self, seed: int = 42, start_date: Optional[date] = None):
        self.rng = random.Random(seed)
        self.start_date = start_date or date.today()

    # --- Resources ---

    def generate_therapists(self, count: int = 5) -> List[str]:
        return [f"T{i}" for i in range(1, count + 1)]

    def generate_holidays(self, count: int = 2, horizon_days: int = 120) -> List[date]:
        """Weekday closures spread over the horizon."""
        holidays = set()
        while len(holidays) < count:
            candidate = self.start_date + timedelta(days=self.rng.randint(7, horizon_days))
            if candidate.weekday() < 5:
                holidays.add(candidate)
        return sorted(holidays)

    # --- Contracts & calendars ---

    def generate_subscription(self, index: int, start_date: Optional[date] = None) -> Subscription:
        program_id, weeks, monthly = self.rng.choice(PROGRAMS)
        pattern = self.rng.choice(WEEKLY_PATTERNS)
        start = start_date or self.start_date - timedelta(days=self.rng.randint(0, 21))
        end = start + timedelta(weeks=weeks)
        total = weeks * len(pattern)

        return Subscription(
            id=f"sub-{index}",
            student_id=f"stu-{index}",
            program_id=program_id,
            start_date=start,
            end_date=end,
            original_end_date=end,
            freeze_days_allowed=self.rng.choice([7, 14, 14, 21]),
            status=SubscriptionStatus.ACTIVE,
            sessions_total=total,
            sessions_completed=0,
            sessions_per_week=len(pattern),
            session_price=round(monthly / (len(pattern) * 4), 2),
            monthly_price=monthly
        )

    def generate_sessions(
        self,
        subscription: Subscription,
        therapist_id: str,
        weekdays: Sequence[int],
        start_time: time,
        duration_minutes: int = 45,
        room_location: Optional[str] = None,
        until: Optional[date] = None
    ) -> List[ScheduledSession]:
        """One session per chosen weekday from start_date up to `until` (or the end date)."""
        last = until or subscription.end_date
        sessions = []
        current = subscription.start_date
        while current <= last and len(sessions) < subscription.sessions_total:
            if current.weekday() in weekdays:
                sessions.append(ScheduledSession(
                    id=f"{subscription.id}-s{len(sessions) + 1:03d}",
                    subscription_id=subscription.id,
                    date=current,
                    start_time=start_time,
                    duration_minutes=duration_minutes,
                    therapist_id=therapist_id,
                    room_location=room_location
                ))
            current += timedelta(days=1)
        return sessions

    def generate_dataset(self, subscription_count: int = 20, therapist_count: int = 5,
                         holiday_count: int = 2) -> Dict[str, list]:
        """
        Subscriptions with non-clashing weekly calendars.
        A (therapist, weekday, time) triple is handed out at most once.
        """
        therapists = self.generate_therapists(therapist_count)
        taken = set()
        subscriptions, sessions = [], []

        for index in range(1, subscription_count + 1):
            subscription = self.generate_subscription(index)
            for _ in range(50):
                pattern = self.rng.choice([p for p in WEEKLY_PATTERNS if len(p) == subscription.sessions_per_week])
                therapist = self.rng.choice(therapists)
                slot = self.rng.choice(SESSION_TIMES)
                keys = {(therapist, d, slot) for d in pattern}
                if not keys & taken:
                    taken |= keys
                    break
            else:
                logger.warning(f"No free weekly slot for {subscription.id}; skipping")
                continue

            subscriptions.append(subscription)
            sessions.extend(self.generate_sessions(
                subscription, therapist, pattern, slot,
                duration_minutes=self.rng.choice(DURATIONS),
                room_location=f"{therapist} {self.rng.choice(ROOMS)}"
            ))

        logger.info(f"✅ Generated {len(subscriptions)} subscriptions, {len(sessions)} sessions")
        return {
            "subscriptions": subscriptions,
            "sessions": sessions,
            "therapists": therapists,
            "holidays": self.generate_holidays(holiday_count),
        }

    def demo_scenario(self) -> Dict[str, list]:
        """
        sub-1: Mon/Wed 10:00 with T1 in Room A, May 5th to June 30th 2025.
        """
        subscription = Subscription(
            id="sub-1",
            student_id="stu-1",
            program_id="prog-speech-8w",
            start_date=date(2025, 5, 5),
            end_date=date(2025, 6, 30),
            original_end_date=date(2025, 6, 30),
            freeze_days_allowed=14,
            sessions_total=16,
            sessions_per_week=2,
            session_price=150.0,
            monthly_price=1200.0
        )
        sessions = self.generate_sessions(subscription, "T1", (0, 2), time(10, 0),
                                          duration_minutes=45, room_location="Room A",
                                          until=date(2025, 6, 4))
        return {"subscriptions": [subscription], "sessions": sessions, "therapists": ["T1", "T2"], "holidays": []}


def load_records(raw: Iterable[Dict[str, Any]], model_class: Type[BaseModel]) -> List[BaseModel]:
    """Validate raw dicts one by one; invalid items are logged and skipped."""
    valid_items = []
    for i, item in enumerate(raw):
        try:
            valid_items.append(model_class(**item))
        except ValidationError as e:
            logger.warning(f"Skipping invalid {model_class.__name__} {i}: {e.errors()[0].get('msg', '')}")
            continue
    return valid_items
