"""
Clock and holiday calendar.

Every date computation in the scheduler asks this object what "today" is
and which days are closed, so results are reproducible under test.
"""

from datetime import date as date_type, timedelta
from typing import Callable, Iterable, Optional, Set


class HolidayCalendar:
    """
    Injected calendar: holidays, weekend days and the current date.
    """

    def __init__(
        self,
        holidays: Optional[Iterable[date_type]] = None,
        weekend_days: Iterable[int] = (5, 6),
        today: Optional[Callable[[], date_type]] = None
    ):
        self.holidays: Set[date_type] = set(holidays or [])
        self.weekend_days: Set[int] = set(weekend_days)
        self._today = today or date_type.today

    @classmethod
    def fixed(cls, today: date_type, holidays: Optional[Iterable[date_type]] = None,
              weekend_days: Iterable[int] = (5, 6)) -> "HolidayCalendar":
        """Calendar frozen at a specific date."""
        return cls(holidays=holidays, weekend_days=weekend_days, today=lambda: today)

    def today(self) -> date_type:
        return self._today()

    def is_holiday(self, d: date_type) -> bool:
        return d in self.holidays

    def is_weekend(self, d: date_type) -> bool:
        return d.weekday() in self.weekend_days

    def is_working_day(self, d: date_type) -> bool:
        return not (self.is_weekend(d) or self.is_holiday(d))

    def count_weekend_days(self, start: date_type, days: int) -> int:
        """Weekend days among the `days` consecutive dates starting at `start`."""
        if days <= 0:
            return 0
        # Whole weeks contribute a fixed number of weekend days.
        full_weeks, remainder = divmod(days, 7)
        count = full_weeks * len(self.weekend_days)
        tail = start + timedelta(days=full_weeks * 7)
        for offset in range(remainder):
            if self.is_weekend(tail + timedelta(days=offset)):
                count += 1
        return count
