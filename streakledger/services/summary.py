"""Streak summary service.

Projects a user's events on every read and mutation and caches the result on
the user row. The cache is only ever a copy of the projection.
"""

import logging
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from streakledger.clock import Clock
from streakledger.models.user import User
from streakledger.services.streak_projector import StreakSummary, project_summary
from streakledger.stores.events import EventStore
from streakledger.utils.errors import NotFoundError

logger = logging.getLogger(__name__)


class SummaryService:
    """Pull-style summary recompute."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        events: EventStore | None = None,
    ):
        self.db = db
        self.clock = clock
        self.events = events or EventStore(db)

    async def project(self, user: User) -> StreakSummary:
        """Recompute the summary and copy it onto the user row (no commit)."""
        today = self.clock.today()
        events = await self.events.list_events(user.id)
        summary = project_summary(events, today, previous_longest=user.longest_streak)
        apply_summary(user, summary, today)
        return summary

    async def refresh(self, user_id: str) -> StreakSummary:
        """Read path: recompute and persist the cached copy if it changed.

        Losing the write to a concurrent writer is harmless here: the freshly
        projected summary is still returned.
        """
        user = await self.db.get(User, user_id, populate_existing=True)
        if not user:
            raise NotFoundError("User", user_id)

        summary = await self.project(user)
        if not self.db.is_modified(user):
            return summary

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            logger.info(f"Summary cache write lost to concurrent writer: user={user_id[:8]}...")
        return summary


def apply_summary(user: User, summary: StreakSummary, today: date) -> None:
    """Copy projected fields onto the user row, touching only changed ones."""
    values = {
        "total_days": summary.total_days,
        "current_streak": summary.current_streak,
        "longest_streak": summary.longest_streak,
        "monthly_days": summary.monthly_days,
        "last_attendance_date": summary.last_attendance_date,
        "summary_computed_on": today,
    }
    for field, value in values.items():
        if getattr(user, field) != value:
            setattr(user, field, value)
