"""
Test configuration and shared fixtures for the freeze scheduler test suite.

Every test runs against in-memory stores seeded with the sub-1 scenario
(Mon/Wed 10:00 with T1 in Room A) and a calendar frozen on 2025-05-20.
"""

import pytest
from datetime import date, time

from generators.data_factory import DataGenerator
from models import FreezeRequest, ScheduledSession
from scheduler.calendar import HolidayCalendar
from scheduler.config import SchedulerSettings
from scheduler.engine import ReschedulingEngine
from scheduler.notifier import InMemoryDispatcher
from scheduler.rollback import RollbackLedger
from scheduler.service import SubscriptionModificationService
from scheduler.stores import InMemorySessionStore, InMemorySubscriptionStore
from scheduler.timeline import TimelineManager
from scheduler.validation import ValidationService


TODAY = date(2025, 5, 20)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def settings():
    return SchedulerSettings()


@pytest.fixture
def calendar():
    """Calendar pinned to TODAY with a Sat/Sun weekend and no holidays."""
    return HolidayCalendar.fixed(TODAY)


@pytest.fixture
def demo():
    return DataGenerator(seed=7).demo_scenario()


@pytest.fixture
def subscription(demo):
    return demo["subscriptions"][0]


@pytest.fixture
def subscription_store(demo):
    return InMemorySubscriptionStore(demo["subscriptions"])


@pytest.fixture
def session_store(demo):
    return InMemorySessionStore(demo["sessions"], demo["therapists"])


@pytest.fixture
def timeline(calendar, subscription_store):
    return TimelineManager(calendar, subscription_store)


@pytest.fixture
def validation(calendar, subscription_store, session_store, settings):
    return ValidationService(calendar, subscription_store, session_store, settings)


@pytest.fixture
def engine(session_store, timeline, calendar, settings):
    return ReschedulingEngine(session_store, timeline, calendar, RollbackLedger(), settings)


@pytest.fixture
def dispatcher():
    return InMemoryDispatcher()


@pytest.fixture
def service(subscription_store, session_store, calendar, settings, dispatcher):
    return SubscriptionModificationService(
        subscription_store, session_store,
        calendar=calendar, settings=settings, dispatcher=dispatcher
    )


@pytest.fixture
def make_freeze():
    """Factory for freeze requests on sub-1; keyword overrides patch the changes."""
    def _make(mod_id: str = "mod-001", subscription_id: str = "sub-1", **changes) -> FreezeRequest:
        proposed = {
            "start_date": date(2025, 6, 1),
            "end_date": date(2025, 6, 7),
            "reason": "Family travel during school break",
        }
        proposed.update(changes)
        return FreezeRequest(id=mod_id, subscription_id=subscription_id, proposed_changes=proposed)
    return _make


@pytest.fixture
def blocking_session():
    """T1 already booked at 10:00 on Monday 2025-06-09 for another student."""
    return ScheduledSession(
        id="sub-9-s001",
        subscription_id="sub-9",
        date=date(2025, 6, 9),
        start_time=time(10, 0),
        duration_minutes=45,
        therapist_id="T1",
        room_location="Room B"
    )
