"""Streak summary refresh tasks.

Summaries are recomputed on every read anyway; these jobs keep the cached
copy on the user row current for users who have not been seen since their
streak lapsed (reporting, leaderboards).
"""

import asyncio
import logging
from datetime import date, datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streakledger.clock import Clock, FixedClock
from streakledger.config import get_settings
from streakledger.models.user import User
from streakledger.services.summary import SummaryService
from streakledger.tasks.celery_app import celery_app
from streakledger.tasks.runner import task_session_factory

logger = logging.getLogger(__name__)

BATCH_SIZE = 500


@celery_app.task(
    bind=True,
    name="streakledger.tasks.attendance.refresh_stale_summaries_task",
    max_retries=3,
    default_retry_delay=300,
    autoretry_for=(Exception,),
    retry_backoff=True,
)
def refresh_stale_summaries_task(self, today_iso: str | None = None):
    """Re-project summaries not computed for today.

    Args:
        today_iso: Optional reference day (YYYY-MM-DD) to replay

    Returns:
        Summary dict with processing results
    """
    logger.info(f"Starting summary refresh (attempt {self.request.retries + 1})")
    today = date.fromisoformat(today_iso) if today_iso else None
    result = asyncio.run(_run(today, only_stale=True))
    logger.info(f"Summary refresh complete: {result}")
    return result


@celery_app.task(
    bind=True,
    name="streakledger.tasks.attendance.refresh_all_summaries_task",
    max_retries=3,
    default_retry_delay=300,
    autoretry_for=(Exception,),
    retry_backoff=True,
)
def refresh_all_summaries_task(self, today_iso: str | None = None):
    """Re-project every user's summary (start of month)."""
    logger.info(f"Starting monthly summary refresh (attempt {self.request.retries + 1})")
    today = date.fromisoformat(today_iso) if today_iso else None
    result = asyncio.run(_run(today, only_stale=False))
    logger.info(f"Monthly summary refresh complete: {result}")
    return result


async def _run(today: date | None, only_stale: bool) -> dict:
    async with task_session_factory() as session_factory:
        return await refresh_summaries(session_factory, today=today, only_stale=only_stale)


async def refresh_summaries(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    today: date | None = None,
    only_stale: bool = True,
) -> dict:
    """Re-project summaries in id order, one commit per user.

    Args:
        session_factory: Session factory to work with
        today: Reference day; defaults to the clock's today
        only_stale: Skip users whose summary was computed for ``today``

    Returns:
        Summary dict with results
    """
    if today is not None:
        clock: Clock = FixedClock(today, get_settings().reference_utc_offset_hours)
    else:
        clock = Clock()
    day = clock.today()
    refreshed = 0
    last_id = ""

    async with session_factory() as session:
        service = SummaryService(session, clock)

        while True:
            query = select(User.id).where(User.id > last_id).order_by(User.id).limit(BATCH_SIZE)
            if only_stale:
                query = query.where(
                    or_(User.summary_computed_on.is_(None), User.summary_computed_on < day)
                )
            result = await session.execute(query)
            user_ids = [row[0] for row in result.fetchall()]
            if not user_ids:
                break

            for user_id in user_ids:
                await service.refresh(user_id)
                refreshed += 1
            last_id = user_ids[-1]

    return {
        "status": "success",
        "reference_day": day.isoformat(),
        "refreshed": refreshed,
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }
