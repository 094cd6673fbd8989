"""
Program timeline arithmetic.

Given a subscription and a freeze length, work out how many days the
program must be extended and where the new end date lands. Everything here
is a pure function of its inputs plus the injected calendar.
"""

import logging
from datetime import date as date_type, timedelta
from typing import Optional, Tuple

from models import (
    BillingAdjustment, BillingStrategy, Subscription,
    TimelineAdjustment, TimelineOptions
)
from .calendar import HolidayCalendar
from .errors import ValidationError
from .stores import SubscriptionStore

logger = logging.getLogger(__name__)


class TimelineManager:
    """
    Computes new end dates and billing estimates for frozen subscriptions.
    """

    DAYS_PER_BILLING_MONTH = 30

    def __init__(self, calendar: HolidayCalendar, subscriptions: Optional[SubscriptionStore] = None):
        self.calendar = calendar
        self.subscriptions = subscriptions

    def calculate_new_end_date(
        self,
        subscription_id: str,
        freeze_days: int,
        options: Optional[TimelineOptions] = None
    ) -> TimelineAdjustment:
        """Project the end date of a stored subscription after a freeze."""
        subscription = self.subscriptions.get(subscription_id) if self.subscriptions else None
        if subscription is None:
            raise ValidationError("SUBSCRIPTION_NOT_FOUND", subscription_id=subscription_id)
        return self.adjust_subscription(subscription, freeze_days, options)

    def adjust_subscription(
        self,
        subscription: Subscription,
        freeze_days: int,
        options: Optional[TimelineOptions] = None
    ) -> TimelineAdjustment:
        if freeze_days < 0:
            raise ValidationError("INVALID_VALUE", field="freeze_days")
        options = options or TimelineOptions()

        # Successive freezes compound on the already-extended end date.
        base = subscription.end_date
        adjustment_days, new_end, method = self.project_end_date(base, freeze_days, options)

        extension = round(adjustment_days / subscription.program_days * 100, 2)
        return TimelineAdjustment(
            subscription_id=subscription.id,
            freeze_days=freeze_days,
            adjustment_days=adjustment_days,
            original_end_date=base,
            new_end_date=new_end,
            calculation_method=method,
            extension_percentage=extension
        )

    def project_end_date(
        self,
        base_end_date: date_type,
        freeze_days: int,
        options: TimelineOptions
    ) -> Tuple[int, date_type, str]:
        """
        Core arithmetic. Returns (adjustment_days, new_end_date, calculation_method).
        """
        adjustment_days = self.adjustment_days(freeze_days, options)
        new_end = self.land(base_end_date, adjustment_days, options.exclude_holidays)
        return adjustment_days, new_end, self._method_name(options)

    def adjustment_days(self, freeze_days: int, options: TimelineOptions) -> int:
        """Freeze days that actually count against the program calendar."""
        if freeze_days <= 0:
            return 0
        if options.include_weekends:
            return freeze_days

        window_start = options.freeze_start_date or self.calendar.today()
        if not options.exclude_holidays:
            return freeze_days - self.calendar.count_weekend_days(window_start, freeze_days)

        non_working = 0
        for offset in range(freeze_days):
            if not self.calendar.is_working_day(window_start + timedelta(days=offset)):
                non_working += 1
        return freeze_days - non_working

    def land(self, base: date_type, days: int, exclude_holidays: bool) -> date_type:
        """Add `days` to `base`; holidays are stepped over when excluded."""
        if days <= 0:
            return base
        if not exclude_holidays or not self.calendar.holidays:
            return base + timedelta(days=days)

        current = base
        remaining = days
        while remaining > 0:
            current += timedelta(days=1)
            if not self.calendar.is_holiday(current):
                remaining -= 1
        return current

    def _method_name(self, options: TimelineOptions) -> str:
        base = "calendar_days" if options.include_weekends else "business_days"
        return f"{base}_holidays_excluded" if options.exclude_holidays else base

    # --- Billing ---

    def adjust_billing_cycle(
        self,
        subscription: Subscription,
        freeze_days: int,
        strategy: BillingStrategy = BillingStrategy.PROPORTIONAL
    ) -> BillingAdjustment:
        """
        Estimate the billing effect of a freeze for the external billing system.
        Nothing is charged or refunded here.
        """
        monthly = subscription.monthly_price
        strategy = BillingStrategy(strategy)

        if strategy == BillingStrategy.CREDIT:
            credit = monthly / self.DAYS_PER_BILLING_MONTH * freeze_days
            adjusted = 0.0
            next_billing = subscription.end_date
        elif strategy == BillingStrategy.DEFER:
            credit = 0.0
            adjusted = monthly
            next_billing = subscription.end_date + timedelta(days=freeze_days)
        else:
            credit = monthly * freeze_days / subscription.program_days
            adjusted = monthly - credit
            next_billing = subscription.end_date + timedelta(days=freeze_days)

        logger.debug(f"Billing estimate for {subscription.id} ({strategy.value}): credit {credit:.2f}")
        return BillingAdjustment(
            subscription_id=subscription.id,
            strategy=strategy,
            original_amount=round(monthly, 2),
            adjusted_amount=round(adjusted, 2),
            credit_issued=round(credit, 2),
            next_billing_date=next_billing
        )
