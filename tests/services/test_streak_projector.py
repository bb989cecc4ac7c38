"""Tests for the summary projector.

The projector is a pure function of (events, today, previous longest), so
these run without a database.
"""

from __future__ import annotations

import random
from datetime import date, timedelta

from hypothesis import given, settings, strategies as st

from streakledger.models.attendance import AttendanceStatus
from streakledger.services.streak_projector import (
    DayRecord,
    StreakSummary,
    attended_runs,
    project_summary,
)

ATTENDED = AttendanceStatus.ATTENDED
PURCHASED = AttendanceStatus.PURCHASED


def attended(*days: date) -> list[DayRecord]:
    return [DayRecord(d, ATTENDED) for d in days]


def purchased(*days: date) -> list[DayRecord]:
    return [DayRecord(d, PURCHASED) for d in days]


def jan(day: int) -> date:
    return date(2024, 1, day)


# =============================================================================
# Reference scenarios
# =============================================================================


class TestProjectorScenarios:
    """Worked examples of the streak rules."""

    def test_seven_consecutive_days(self):
        events = attended(*(jan(d) for d in range(1, 8)))

        summary = project_summary(events, today=jan(7))

        assert summary.current_streak == 7
        assert summary.longest_streak == 7
        assert summary.total_days == 7
        assert summary.last_attendance_date == jan(7)

    def test_gap_resets_current_but_keeps_longest(self):
        events = attended(jan(1), jan(2), jan(3), jan(5))

        summary = project_summary(events, today=jan(5))

        assert summary.current_streak == 1
        assert summary.longest_streak == 3
        assert summary.total_days == 4

    def test_purchased_only(self):
        events = purchased(jan(2), jan(5), jan(9))

        summary = project_summary(events, today=jan(10))

        assert summary.purchased_days == 3
        assert summary.current_attended_run == 0
        assert summary.current_streak == 3
        assert summary.total_days == 3

    def test_purchase_adds_to_run_ending_yesterday(self):
        # Attended Jan 5-9, bought Jan 1 back; evaluated Jan 10 before check-in
        events = attended(*(jan(d) for d in range(5, 10))) + purchased(jan(1))

        summary = project_summary(events, today=jan(10))

        assert summary.current_attended_run == 5
        assert summary.current_streak == 6
        assert summary.longest_streak == 6

    def test_purchased_day_does_not_bridge_runs(self):
        events = attended(jan(1), jan(2), jan(4), jan(5)) + purchased(jan(3))

        summary = project_summary(events, today=jan(5))

        assert summary.current_attended_run == 2
        assert summary.longest_attended_run == 2
        assert summary.current_streak == 3


class TestProjectorEdgeCases:
    def test_no_events(self):
        summary = project_summary([], today=jan(10))

        assert summary == StreakSummary()

    def test_no_events_keeps_previous_longest(self):
        summary = project_summary([], today=jan(10), previous_longest=12)

        assert summary.longest_streak == 12
        assert summary.current_streak == 0

    def test_run_still_current_the_day_after(self):
        summary = project_summary(attended(jan(8), jan(9)), today=jan(10))

        assert summary.current_streak == 2

    def test_run_expires_after_a_missed_day(self):
        summary = project_summary(attended(jan(7), jan(8)), today=jan(10))

        assert summary.current_streak == 0
        assert summary.current_attended_run == 0
        assert summary.longest_streak == 2

    def test_longest_never_decreases(self):
        summary = project_summary(attended(jan(9)), today=jan(10), previous_longest=20)

        assert summary.longest_streak == 20

    def test_monthly_days_counts_reference_month_only(self):
        events = attended(date(2023, 12, 30), date(2023, 12, 31), jan(1), jan(2))

        summary = project_summary(events, today=jan(2))

        assert summary.monthly_days == 2
        assert summary.total_days == 4
        assert summary.current_streak == 4

    def test_to_dict_serializes_date(self):
        data = project_summary(attended(jan(9)), today=jan(10)).to_dict()

        assert data["last_attendance_date"] == "2024-01-09"
        assert data["current_streak"] == 1

    def test_attended_runs_over_empty_input(self):
        assert attended_runs([], jan(10)) == (0, 0)


# =============================================================================
# Property tests
# =============================================================================

history = st.dictionaries(
    keys=st.integers(min_value=0, max_value=60),
    values=st.sampled_from([ATTENDED, PURCHASED]),
    max_size=40,
)


def build_events(offsets: dict[int, AttendanceStatus], today: date) -> list[DayRecord]:
    """One event per past day; offset 0 is today."""
    return [DayRecord(today - timedelta(days=o), status) for o, status in offsets.items()]


class TestProjectorProperties:
    TODAY = date(2024, 3, 15)

    @settings(max_examples=200)
    @given(offsets=history, seed=st.integers(min_value=0, max_value=10_000))
    def test_order_independent(self, offsets, seed):
        """Property: input order never changes the summary."""
        events = build_events(offsets, self.TODAY)
        shuffled = list(events)
        random.Random(seed).shuffle(shuffled)

        assert project_summary(events, self.TODAY) == project_summary(shuffled, self.TODAY)

    @settings(max_examples=200)
    @given(offsets=history)
    def test_idempotent(self, offsets):
        """Property: re-projecting with the stored longest is a no-op."""
        events = build_events(offsets, self.TODAY)

        first = project_summary(events, self.TODAY)
        second = project_summary(events, self.TODAY, previous_longest=first.longest_streak)

        assert first == second

    @given(offsets=history, previous=st.integers(min_value=0, max_value=100))
    def test_summary_bounds(self, offsets, previous):
        """Property: the summary fields stay mutually consistent."""
        events = build_events(offsets, self.TODAY)

        summary = project_summary(events, self.TODAY, previous_longest=previous)

        assert summary.total_days == len(events)
        assert summary.current_streak >= summary.purchased_days
        assert summary.current_streak <= summary.longest_streak
        assert summary.longest_streak >= previous
        assert summary.current_attended_run <= summary.longest_attended_run
        assert 0 <= summary.monthly_days <= summary.total_days
