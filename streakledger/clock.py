"""Reference clock for calendar-day decisions.

Every "today" / "yesterday" comparison in the attendance domain uses a single
fixed-offset reference timezone. Date adjacency is timezone sensitive, so the
offset must never come from the caller.
"""

from datetime import date, datetime, timedelta, timezone

from streakledger.config import get_settings


class Clock:
    """Wall clock pinned to the reference timezone."""

    def __init__(self, utc_offset_hours: int | None = None):
        if utc_offset_hours is None:
            utc_offset_hours = get_settings().reference_utc_offset_hours
        self.tz = timezone(timedelta(hours=utc_offset_hours))

    def now(self) -> datetime:
        """Current time in the reference timezone."""
        return datetime.now(self.tz)

    def today(self) -> date:
        """Current calendar day in the reference timezone."""
        return self.now().date()


class FixedClock(Clock):
    """Clock frozen at a given calendar day (jobs replaying a date, tests)."""

    def __init__(self, today: date, utc_offset_hours: int = 7):
        self.tz = timezone(timedelta(hours=utc_offset_hours))
        self._today = today

    def now(self) -> datetime:
        return datetime(
            self._today.year, self._today.month, self._today.day, 12, 0, tzinfo=self.tz
        )

    def today(self) -> date:
        return self._today

    def advance(self, days: int = 1) -> None:
        self._today += timedelta(days=days)
