"""
Unit tests for timeline arithmetic, billing estimates and the calendar.
"""

import pytest
from datetime import date, timedelta
from hypothesis import given, settings as hypothesis_settings, strategies as st

from generators.data_factory import DataGenerator
from models import BillingStrategy, TimelineOptions
from scheduler.calendar import HolidayCalendar
from scheduler.errors import ValidationError
from scheduler.stores import InMemorySubscriptionStore
from scheduler.timeline import TimelineManager


class TestHolidayCalendar:

    def test_weekend_and_holiday_flags(self):
        calendar = HolidayCalendar.fixed(date(2025, 5, 20), holidays=[date(2025, 6, 3)])
        assert calendar.today() == date(2025, 5, 20)
        assert calendar.is_weekend(date(2025, 6, 7))
        assert calendar.is_holiday(date(2025, 6, 3))
        assert not calendar.is_working_day(date(2025, 6, 3))
        assert calendar.is_working_day(date(2025, 6, 2))

    def test_count_weekend_days_across_weeks(self):
        """Sun 06-01 through Tue 06-10 holds three weekend days."""
        calendar = HolidayCalendar.fixed(date(2025, 5, 20))
        assert calendar.count_weekend_days(date(2025, 6, 1), 10) == 3
        assert calendar.count_weekend_days(date(2025, 6, 2), 5) == 0
        assert calendar.count_weekend_days(date(2025, 6, 2), 0) == 0

    def test_custom_weekend(self):
        """Friday/Saturday weekends are configurable."""
        calendar = HolidayCalendar.fixed(date(2025, 5, 20), weekend_days=(4, 5))
        assert calendar.is_weekend(date(2025, 6, 6))
        assert not calendar.is_weekend(date(2025, 6, 8))


class TestCalculateNewEndDate:
    """End-date projection for the sub-1 contract (ends 2025-06-30, 56-day program)."""

    def test_calendar_days(self, timeline):
        result = timeline.calculate_new_end_date("sub-1", 7)

        assert result.adjustment_days == 7
        assert result.original_end_date == date(2025, 6, 30)
        assert result.new_end_date == date(2025, 7, 7)
        assert result.calculation_method == "calendar_days"
        assert result.extension_percentage == 12.5

    def test_business_days_skip_weekends(self, timeline):
        """Sun 06-01 .. Sat 06-07 contains two weekend days."""
        options = TimelineOptions(include_weekends=False, freeze_start_date=date(2025, 6, 1))
        result = timeline.calculate_new_end_date("sub-1", 7, options)

        assert result.adjustment_days == 5
        assert result.new_end_date == date(2025, 7, 5)
        assert result.calculation_method == "business_days"

    def test_holidays_are_stepped_over(self, subscription_store):
        calendar = HolidayCalendar.fixed(date(2025, 5, 20), holidays=[date(2025, 7, 2)])
        manager = TimelineManager(calendar, subscription_store)

        result = manager.calculate_new_end_date("sub-1", 7, TimelineOptions(exclude_holidays=True))

        assert result.adjustment_days == 7
        assert result.new_end_date == date(2025, 7, 8)
        assert result.calculation_method == "calendar_days_holidays_excluded"

    def test_business_days_with_holidays(self, subscription_store):
        calendar = HolidayCalendar.fixed(date(2025, 5, 20), holidays=[date(2025, 6, 3)])
        manager = TimelineManager(calendar, subscription_store)
        options = TimelineOptions(include_weekends=False, exclude_holidays=True,
                                  freeze_start_date=date(2025, 6, 1))

        result = manager.calculate_new_end_date("sub-1", 7, options)

        assert result.adjustment_days == 4
        assert result.new_end_date == date(2025, 7, 4)
        assert result.calculation_method == "business_days_holidays_excluded"

    def test_zero_days_keeps_end_date(self, timeline):
        result = timeline.calculate_new_end_date("sub-1", 0)
        assert result.adjustment_days == 0
        assert result.new_end_date == date(2025, 6, 30)

    def test_extension_compounds_on_current_end(self, subscription_store, calendar):
        """A second freeze starts from the already-extended end date."""
        sub = subscription_store.get("sub-1")
        extended = sub.model_copy(update={"end_date": date(2025, 7, 7), "freeze_days_used": 7})
        subscription_store.save(extended)

        result = TimelineManager(calendar, subscription_store).calculate_new_end_date("sub-1", 3)
        assert result.new_end_date == date(2025, 7, 10)

    def test_unknown_subscription(self, timeline):
        with pytest.raises(ValidationError) as exc_info:
            timeline.calculate_new_end_date("sub-404", 7)
        assert exc_info.value.code == "SUBSCRIPTION_NOT_FOUND"

    def test_negative_days_rejected(self, timeline):
        with pytest.raises(ValidationError) as exc_info:
            timeline.calculate_new_end_date("sub-1", -1)
        assert exc_info.value.code == "INVALID_VALUE"

    def test_multi_year_span(self, timeline):
        """800 days from 2025-06-30 crosses two year boundaries."""
        result = timeline.calculate_new_end_date("sub-1", 800)

        assert result.new_end_date == date(2027, 9, 8)
        assert timeline.calculate_new_end_date("sub-1", 800) == result

    def test_multi_year_span_steps_over_each_holiday(self, subscription_store):
        calendar = HolidayCalendar.fixed(date(2025, 5, 20), holidays=[date(2026, 1, 1), date(2027, 1, 1)])
        manager = TimelineManager(calendar, subscription_store)

        result = manager.calculate_new_end_date("sub-1", 800, TimelineOptions(exclude_holidays=True))

        assert result.adjustment_days == 800
        assert result.new_end_date == date(2027, 9, 10)


class TestTimelineProperties:
    """Property-based checks; the manager is built inside each example."""

    @hypothesis_settings(max_examples=60, deadline=None)
    @given(
        freeze_days=st.integers(min_value=0, max_value=60),
        include_weekends=st.booleans(),
        exclude_holidays=st.booleans(),
        start_offset=st.integers(min_value=0, max_value=30),
    )
    def test_idempotent_and_never_shrinks(self, freeze_days, include_weekends, exclude_holidays, start_offset):
        """Same inputs give the same answer, and the end date only moves forward."""
        demo = DataGenerator(seed=7).demo_scenario()
        calendar = HolidayCalendar.fixed(date(2025, 5, 20), holidays=[date(2025, 6, 3), date(2025, 7, 2)])
        manager = TimelineManager(calendar, InMemorySubscriptionStore(demo["subscriptions"]))
        options = TimelineOptions(
            include_weekends=include_weekends,
            exclude_holidays=exclude_holidays,
            freeze_start_date=date(2025, 6, 1) + timedelta(days=start_offset)
        )

        first = manager.calculate_new_end_date("sub-1", freeze_days, options)
        second = manager.calculate_new_end_date("sub-1", freeze_days, options)

        assert first == second
        assert first.new_end_date >= first.original_end_date
        assert 0 <= first.adjustment_days <= freeze_days


class TestBillingAdjustment:
    """Estimates for a 1200/month contract over a 7-day freeze."""

    def test_proportional(self, timeline, subscription):
        billing = timeline.adjust_billing_cycle(subscription, 7)
        assert billing.strategy == BillingStrategy.PROPORTIONAL
        assert billing.credit_issued == 150.0
        assert billing.adjusted_amount == 1050.0
        assert billing.next_billing_date == date(2025, 7, 7)

    def test_credit(self, timeline, subscription):
        billing = timeline.adjust_billing_cycle(subscription, 7, BillingStrategy.CREDIT)
        assert billing.credit_issued == 280.0
        assert billing.adjusted_amount == 0.0
        assert billing.next_billing_date == date(2025, 6, 30)

    def test_defer(self, timeline, subscription):
        billing = timeline.adjust_billing_cycle(subscription, 7, "defer")
        assert billing.credit_issued == 0.0
        assert billing.adjusted_amount == 1200.0
        assert billing.next_billing_date == date(2025, 7, 7)
