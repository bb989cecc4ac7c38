"""Attendance service: daily check-in and attendance read models."""

import calendar
import logging
from datetime import date

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from streakledger.clock import Clock
from streakledger.config import Settings, get_settings
from streakledger.middleware.prometheus import record_checkin
from streakledger.models.attendance import AttendanceEvent, AttendanceStatus
from streakledger.models.ledger import LedgerReason
from streakledger.services.ledger import LedgerService
from streakledger.services.summary import SummaryService
from streakledger.stores.events import EventStore
from streakledger.utils.db import user_transaction
from streakledger.utils.errors import ValidationError

logger = logging.getLogger(__name__)


class DayState:
    """Calendar cell states."""

    ATTENDED = "attended"
    PURCHASED = "purchased"
    MISSED = "missed"
    TODAY = "today"
    FUTURE = "future"


class AttendanceService:
    """Daily check-in and attendance queries."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        redis: Redis | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.clock = clock
        self.settings = settings or get_settings()
        self.events = EventStore(db, window_days=self.settings.backfill_window_days)
        self.summaries = SummaryService(db, clock, events=self.events)
        self.ledger = LedgerService(
            db, redis=redis, clock=clock, cache_ttl=self.settings.balance_cache_ttl
        )

    async def check_in(self, user_id: str) -> dict:
        """Record today's attendance and credit the daily reward.

        The event, the reward entry and the re-projected summary commit
        together or not at all.

        Raises:
            AlreadyCheckedInError: today already has an event
            ConcurrentModificationError: another write for the user won
        """
        today = self.clock.today()
        now = self.clock.now()
        reward = self.settings.daily_checkin_reward

        async with user_transaction(self.db, user_id):
            user = await self.ledger.get_user(user_id, fresh=True)
            event = await self.events.append_check_in(
                user_id, today, today=today, now=now, coins_earned=reward
            )
            if reward > 0:
                await self.ledger.credit(
                    user,
                    reward,
                    LedgerReason.DAILY_CHECKIN,
                    reference_id=str(event.id),
                    description=f"Daily check-in {today.isoformat()}",
                )
            summary = await self.summaries.project(user)

        await self.ledger.invalidate_balance_cache(user_id)
        record_checkin()
        logger.info(
            f"Check-in: user={user_id[:8]}... date={today.isoformat()} "
            f"streak={summary.current_streak} total={summary.total_days}"
        )

        return {
            "date": today.isoformat(),
            "streak": summary.current_streak,
            "longest_streak": summary.longest_streak,
            "total_days": summary.total_days,
            "coins_earned": reward,
            "reward_granted": reward > 0,
            "balance": user.coin_balance,
        }

    async def get_summary(self, user_id: str) -> dict:
        summary = await self.summaries.refresh(user_id)
        return summary.to_dict()

    async def get_status(self, user_id: str) -> dict:
        """Today's check-in state, the summary and the balance."""
        today = self.clock.today()
        summary = await self.summaries.refresh(user_id)
        checked_in = await self.events.get_event(user_id, today) is not None
        balance = await self.ledger.get_balance(user_id)

        return {
            "today": today.isoformat(),
            "checked_in_today": checked_in,
            "can_check_in": not checked_in,
            "summary": summary.to_dict(),
            "balance": balance,
            "daily_reward": self.settings.daily_checkin_reward,
        }

    async def get_history(self, user_id: str, limit: int = 30, offset: int = 0) -> dict:
        """Attendance events, newest first."""
        await self.ledger.get_user(user_id)
        events, total = await self.events.list_recent(user_id, limit=limit, offset=offset)

        return {
            "items": [_event_dict(e) for e in events],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    async def get_calendar(self, user_id: str, month: int, year: int) -> dict:
        """Per-day attendance state of one calendar month.

        Raises:
            ValidationError: invalid month, or a month after the current one
        """
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12", {"month": month})

        today = self.clock.today()
        if (year, month) > (today.year, today.month):
            raise ValidationError(
                "Cannot view a future month",
                {"month": month, "year": year},
            )

        await self.ledger.get_user(user_id)

        days_in_month = calendar.monthrange(year, month)[1]
        first = date(year, month, 1)
        last = date(year, month, days_in_month)
        by_date = {
            e.date: e for e in await self.events.list_events_between(user_id, first, last)
        }
        oldest_purchasable = self.events.oldest_purchasable(today)

        days = []
        counts = {
            DayState.ATTENDED: 0,
            DayState.PURCHASED: 0,
            DayState.MISSED: 0,
        }
        for day_number in range(1, days_in_month + 1):
            day = date(year, month, day_number)
            event = by_date.get(day)
            if event is not None:
                state = (
                    DayState.PURCHASED if event.is_purchased else DayState.ATTENDED
                )
            elif day == today:
                state = DayState.TODAY
            elif day > today:
                state = DayState.FUTURE
            else:
                state = DayState.MISSED

            if state in counts:
                counts[state] += 1

            days.append({
                "date": day.isoformat(),
                "state": state,
                "coins_earned": event.coins_earned if event else 0,
                "purchasable": state == DayState.MISSED and day >= oldest_purchasable,
            })

        return {
            "month": month,
            "year": year,
            "days": days,
            "attended_days": counts[DayState.ATTENDED],
            "purchased_days": counts[DayState.PURCHASED],
            "missed_days": counts[DayState.MISSED],
            "total_days": counts[DayState.ATTENDED] + counts[DayState.PURCHASED],
            "total_coins": sum(e.coins_earned for e in by_date.values()),
        }

    async def get_stats(self, user_id: str, year: int | None = None) -> dict:
        """Overall summary, plus one year's totals broken down by month.

        Raises:
            ValidationError: a year after the current one
        """
        today = self.clock.today()
        if year is not None and year > today.year:
            raise ValidationError("Cannot view a future year", {"year": year})

        summary = await self.summaries.refresh(user_id)
        result: dict = {"overall": summary.to_dict(), "year_stats": None}
        if year is None:
            return result

        events = await self.events.list_events_between(
            user_id, date(year, 1, 1), date(year, 12, 31)
        )
        months = [
            {"month": month, "total_days": 0, "coins_earned": 0} for month in range(1, 13)
        ]
        for event in events:
            bucket = months[event.date.month - 1]
            bucket["total_days"] += 1
            bucket["coins_earned"] += event.coins_earned

        result["year_stats"] = {
            "year": year,
            "total_days": len(events),
            "total_coins_earned": sum(e.coins_earned for e in events),
            "purchased_days": sum(1 for e in events if e.is_purchased),
            "months": months,
        }
        return result


def _event_dict(event: AttendanceEvent) -> dict:
    return {
        "date": event.date.isoformat(),
        "status": event.status.value,
        "purchased": event.status == AttendanceStatus.PURCHASED,
        "coins_earned": event.coins_earned,
        "created_at": event.created_at.isoformat(),
    }
