"""Event store: immutable per-user, per-day attendance events."""

from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from streakledger.models.attendance import AttendanceEvent, AttendanceStatus
from streakledger.utils.errors import (
    AlreadyCheckedInError,
    FutureDateRejectedError,
    WindowExceededError,
)


class EventStore:
    """SQLAlchemy-backed attendance event store.

    Appends only flush; committing is the caller's unit of work.
    """

    def __init__(self, session: AsyncSession, window_days: int = 30):
        self.session = session
        self.window_days = window_days

    def oldest_purchasable(self, today: date) -> date:
        """Oldest day a backfill purchase may target."""
        return today - timedelta(days=self.window_days)

    async def get_event(self, user_id: str, day: date) -> AttendanceEvent | None:
        result = await self.session.execute(
            select(AttendanceEvent)
            .where(AttendanceEvent.user_id == user_id)
            .where(AttendanceEvent.date == day)
        )
        return result.scalar_one_or_none()

    async def list_events(self, user_id: str) -> list[AttendanceEvent]:
        """All events of a user, oldest first."""
        result = await self.session.execute(
            select(AttendanceEvent)
            .where(AttendanceEvent.user_id == user_id)
            .order_by(AttendanceEvent.date)
        )
        return list(result.scalars().all())

    async def list_events_between(
        self, user_id: str, start: date, end: date
    ) -> list[AttendanceEvent]:
        """Events with start <= date <= end, oldest first."""
        result = await self.session.execute(
            select(AttendanceEvent)
            .where(AttendanceEvent.user_id == user_id)
            .where(AttendanceEvent.date >= start)
            .where(AttendanceEvent.date <= end)
            .order_by(AttendanceEvent.date)
        )
        return list(result.scalars().all())

    async def list_recent(
        self, user_id: str, *, limit: int = 30, offset: int = 0
    ) -> tuple[list[AttendanceEvent], int]:
        """Page of events newest first, plus the user's total event count."""
        result = await self.session.execute(
            select(AttendanceEvent)
            .where(AttendanceEvent.user_id == user_id)
            .order_by(AttendanceEvent.date.desc())
            .offset(offset)
            .limit(limit)
        )
        events = list(result.scalars().all())

        count_result = await self.session.execute(
            select(func.count())
            .select_from(AttendanceEvent)
            .where(AttendanceEvent.user_id == user_id)
        )
        return events, count_result.scalar() or 0

    async def covered_dates(self, user_id: str, start: date, end: date) -> set[date]:
        """Days in [start, end] that already have an event."""
        result = await self.session.execute(
            select(AttendanceEvent.date)
            .where(AttendanceEvent.user_id == user_id)
            .where(AttendanceEvent.date >= start)
            .where(AttendanceEvent.date <= end)
        )
        return {row[0] for row in result.fetchall()}

    async def append_check_in(
        self,
        user_id: str,
        day: date,
        *,
        today: date,
        now: datetime,
        coins_earned: int = 0,
    ) -> AttendanceEvent:
        """Record an attended day. Only today can be checked in."""
        if day != today:
            raise FutureDateRejectedError(day, today)
        if await self.get_event(user_id, day) is not None:
            raise AlreadyCheckedInError(day)

        return await self._insert(
            AttendanceEvent(
                user_id=user_id,
                date=day,
                status=AttendanceStatus.ATTENDED,
                coins_earned=coins_earned,
                created_at=now,
            )
        )

    def validate_purchase_date(self, day: date, today: date) -> None:
        """Raise unless ``day`` lies in [today - window, today)."""
        if day >= today:
            raise FutureDateRejectedError(day, today)
        oldest = self.oldest_purchasable(today)
        if day < oldest:
            raise WindowExceededError(day, oldest, self.window_days)

    async def append_purchase(
        self,
        user_id: str,
        day: date,
        *,
        today: date,
        now: datetime,
        coins_earned: int = 0,
    ) -> AttendanceEvent:
        """Record a purchased (backfilled) past day."""
        self.validate_purchase_date(day, today)
        if await self.get_event(user_id, day) is not None:
            raise AlreadyCheckedInError(day)

        return await self._insert(
            AttendanceEvent(
                user_id=user_id,
                date=day,
                status=AttendanceStatus.PURCHASED,
                coins_earned=coins_earned,
                created_at=now,
            )
        )

    async def _insert(self, event: AttendanceEvent) -> AttendanceEvent:
        # The unique (user_id, date) constraint is the final guard against a
        # concurrent append for the same day.
        day = event.date
        self.session.add(event)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise AlreadyCheckedInError(day) from e
        return event
