"""Business-hours arithmetic.

Pure functions over a calendar value: no database, no clock. All arithmetic is
done on UTC instants; local time is only used to place the daily windows, so
DST transitions shorten or lengthen a window instead of shifting it.
"""

import datetime as dt
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo

UTC = dt.timezone.utc

DEFAULT_WEEKLY_SCHEDULE = {
    0: (dt.time(9), dt.time(17)),
    1: (dt.time(9), dt.time(17)),
    2: (dt.time(9), dt.time(17)),
    3: (dt.time(9), dt.time(17)),
    4: (dt.time(9), dt.time(17)),
}


def parse_schedule(raw: dict) -> dict[int, tuple[dt.time, dt.time]]:
    """Parse a stored ``{"0": ["09:00", "17:00"], ...}`` schedule.

    Raises ValueError for unknown weekdays or a window that doesn't end after
    it starts.
    """
    schedule: dict[int, tuple[dt.time, dt.time]] = {}
    for day, window in raw.items():
        weekday = int(day)
        if weekday < 0 or weekday > 6:
            raise ValueError(f"Invalid weekday {day!r}")
        if window is None:
            continue
        start, end = (dt.time.fromisoformat(v) for v in window)
        if end <= start:
            raise ValueError(f"Window for weekday {weekday} must end after it starts")
        schedule[weekday] = (start, end)
    return schedule


@dataclass(frozen=True)
class BusinessCalendar:
    timezone: str = "UTC"
    weekly_schedule: dict[int, tuple[dt.time, dt.time]] = field(
        default_factory=lambda: dict(DEFAULT_WEEKLY_SCHEDULE)
    )
    holidays: frozenset[dt.date] = frozenset()
    # (month, day) pairs observed every year
    recurring_holidays: frozenset[tuple[int, int]] = frozenset()

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_holiday(self, day: dt.date) -> bool:
        return day in self.holidays or (day.month, day.day) in self.recurring_holidays

    def window(self, day: dt.date) -> tuple[dt.datetime, dt.datetime] | None:
        """Working window for a local date as UTC instants, or None if closed."""
        hours = self.weekly_schedule.get(day.weekday())
        if hours is None or self.is_holiday(day):
            return None
        tz = self.tz
        start = dt.datetime.combine(day, hours[0], tzinfo=tz).astimezone(UTC)
        end = dt.datetime.combine(day, hours[1], tzinfo=tz).astimezone(UTC)
        return start, end

    def _local_date(self, instant: dt.datetime) -> dt.date:
        return instant.astimezone(self.tz).date()

    def _start_of_next_day(self, day: dt.date) -> dt.datetime:
        return dt.datetime.combine(day + dt.timedelta(days=1), dt.time(0), tzinfo=self.tz).astimezone(UTC)

    def add_business_hours(self, start: dt.datetime, hours: float) -> dt.datetime:
        """Return the instant ``hours`` of business time after ``start``."""
        if start.tzinfo is None:
            raise ValueError("start must be timezone-aware")
        if hours <= 0:
            return start
        if not self.weekly_schedule:
            raise ValueError("Calendar has no working days")

        remaining = dt.timedelta(hours=hours)
        current = start.astimezone(UTC)
        # A full year of holidays would still terminate well before this.
        for _ in range(3660):
            day = self._local_date(current)
            window = self.window(day)
            if window is not None:
                open_at, close_at = window
                if current < open_at:
                    current = open_at
                if current < close_at:
                    available = close_at - current
                    if available >= remaining:
                        return current + remaining
                    remaining -= available
            current = self._start_of_next_day(day)
        raise ValueError("Could not place business hours within ten years")

    def business_seconds_between(self, start: dt.datetime, end: dt.datetime) -> float:
        """Business time elapsed between two instants, in seconds."""
        if end <= start:
            return 0.0
        total = 0.0
        day = self._local_date(start)
        last = self._local_date(end)
        while day <= last:
            window = self.window(day)
            if window is not None:
                lo = max(window[0], start)
                hi = min(window[1], end)
                if hi > lo:
                    total += (hi - lo).total_seconds()
            day += dt.timedelta(days=1)
        return total


DEFAULT_CALENDAR = BusinessCalendar()
