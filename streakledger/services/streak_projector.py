"""Summary projector: attendance events -> streak summary.

Pure function of (events, today, previously stored longest streak). It never
touches storage, so it can run concurrently from any number of readers and
is recomputed on every read instead of being pushed on every idle day.

Streak rules:
- purchased days are cumulative: each one counts, adjacency is irrelevant
- attended days count only as consecutive runs (dates exactly one day apart)
- the attended run is "current" only while its last day is today or
  yesterday; after that it contributes 0
- current_streak = purchased + current attended run
- longest_streak = max(previous longest, purchased + longest attended run)
  and never goes down
"""

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Any, Protocol

from streakledger.models.attendance import AttendanceStatus


class DatedEvent(Protocol):
    date: date
    status: AttendanceStatus


@dataclass(frozen=True)
class DayRecord:
    """Storage-free attendance event."""

    date: date
    status: AttendanceStatus


@dataclass(frozen=True)
class StreakSummary:
    """Derived attendance summary for one user."""

    total_days: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_attendance_date: date | None = None
    monthly_days: int = 0
    purchased_days: int = 0
    current_attended_run: int = 0
    longest_attended_run: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.last_attendance_date is not None:
            data["last_attendance_date"] = self.last_attendance_date.isoformat()
        return data


def attended_runs(days: Iterable[date], today: date) -> tuple[int, int]:
    """Return (current_run, longest_run) over ascending attended dates."""
    longest = 0
    run = 0
    previous: date | None = None

    for day in days:
        if previous is not None and day - previous == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = day

    if previous is None or today - previous > timedelta(days=1):
        # Expired (or no attended day at all)
        return 0, longest
    return run, longest


def project_summary(
    events: Iterable[DatedEvent],
    today: date,
    previous_longest: int = 0,
) -> StreakSummary:
    """Project a user's events onto their streak summary.

    Args:
        events: the user's attendance events, in any order, one per date
        today: reference calendar day
        previous_longest: longest_streak stored by the previous projection

    Returns:
        StreakSummary
    """
    ordered = sorted(events, key=lambda e: e.date)
    if not ordered:
        return StreakSummary(longest_streak=max(previous_longest, 0))

    purchased = [e.date for e in ordered if e.status == AttendanceStatus.PURCHASED]
    attended = [e.date for e in ordered if e.status == AttendanceStatus.ATTENDED]

    current_run, longest_run = attended_runs(attended, today)

    purchased_count = len(purchased)
    current_streak = purchased_count + current_run
    longest_streak = max(previous_longest, purchased_count + longest_run)

    monthly_days = sum(
        1 for e in ordered if e.date.year == today.year and e.date.month == today.month
    )

    return StreakSummary(
        total_days=len(purchased) + len(attended),
        current_streak=current_streak,
        longest_streak=longest_streak,
        last_attendance_date=ordered[-1].date,
        monthly_days=monthly_days,
        purchased_days=purchased_count,
        current_attended_run=current_run,
        longest_attended_run=longest_run,
    )
