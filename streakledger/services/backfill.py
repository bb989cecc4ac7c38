"""Backfill service: buying back missed days.

A purchase debits cost_per_day for each day, appends a purchased event per
day and credits reward_per_day back per day, so the net price of a day is
cost - reward. The whole batch is one transaction.
"""

import logging
from datetime import date, timedelta
from typing import Any
from uuid import uuid4

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from streakledger.clock import Clock
from streakledger.config import Settings, get_settings
from streakledger.middleware.prometheus import record_missed_days_purchased
from streakledger.models.ledger import LedgerReason
from streakledger.services.ledger import LedgerService
from streakledger.services.summary import SummaryService
from streakledger.stores.events import EventStore
from streakledger.utils.db import user_transaction
from streakledger.utils.errors import (
    AlreadyCheckedInError,
    LedgerError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class BackfillService:
    """Missed-day listing, pricing and purchase."""

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

    def pricing(self) -> dict[str, int]:
        cost = self.settings.missed_day_cost
        reward = self.settings.purchased_day_reward
        return {
            "cost_per_day": cost,
            "reward_per_day": reward,
            "net_cost_per_day": cost - reward,
            "window_days": self.settings.backfill_window_days,
        }

    async def list_available(self, user_id: str) -> list[date]:
        """Days in [today - window, today) without an event, most recent first."""
        await self.ledger.get_user(user_id)

        today = self.clock.today()
        oldest = self.events.oldest_purchasable(today)
        yesterday = today - timedelta(days=1)
        covered = await self.events.covered_dates(user_id, oldest, yesterday)

        available = []
        day = yesterday
        while day >= oldest:
            if day not in covered:
                available.append(day)
            day -= timedelta(days=1)
        return available

    async def get_available(self, user_id: str) -> dict[str, Any]:
        days = await self.list_available(user_id)
        balance = await self.ledger.get_balance(user_id)
        pricing = self.pricing()
        return {
            "dates": [d.isoformat() for d in days],
            "count": len(days),
            "balance": balance,
            "max_affordable": balance // pricing["cost_per_day"],
            **pricing,
        }

    async def _validate(self, user_id: str, raw_dates: list[Any]) -> list[date]:
        """Parse and check every requested date; reject the batch on any error.

        Raises:
            ValidationError: empty request, unparseable or repeated date
            FutureDateRejectedError / WindowExceededError / AlreadyCheckedInError:
                the first offending date; ``details["errors"]`` lists every one
        """
        if not raw_dates:
            raise ValidationError("At least one date is required")

        today = self.clock.today()
        errors: list[dict[str, Any]] = []
        first_error: LedgerError | None = None
        parsed: list[date] = []
        seen: set[date] = set()

        covered = await self.events.covered_dates(
            user_id, self.events.oldest_purchasable(today), today
        )

        for raw in raw_dates:
            error: LedgerError | None = None
            day = _parse_date(raw)
            if day is None:
                error = ValidationError(f"Invalid date: {raw}", {"date": str(raw)})
            elif day in seen:
                error = ValidationError(
                    f"Date {day.isoformat()} is repeated in the request",
                    {"date": day.isoformat()},
                )
            else:
                seen.add(day)
                try:
                    self.events.validate_purchase_date(day, today)
                except LedgerError as e:
                    error = e
                else:
                    if day in covered:
                        error = AlreadyCheckedInError(day)

            if error is None:
                parsed.append(day)
                continue

            first_error = first_error or error
            errors.append({"date": str(raw), "code": error.code, "message": error.message})

        if first_error is not None:
            first_error.details["errors"] = errors
            raise first_error

        return sorted(parsed)

    async def purchase(self, user_id: str, dates: list[Any]) -> dict[str, Any]:
        """Buy back missed days as one atomic unit.

        Steps: validate all dates, debit the total cost, append a purchased
        event per day, credit the per-day reward, re-project the summary.
        Any failure rolls every step back.

        Raises:
            ValidationError / FutureDateRejectedError / WindowExceededError /
            AlreadyCheckedInError: invalid batch, nothing written
            InsufficientBalanceError: balance below the total cost
        """
        today = self.clock.today()
        now = self.clock.now()
        cost = self.settings.missed_day_cost
        reward = self.settings.purchased_day_reward
        purchase_id = str(uuid4())

        async with user_transaction(self.db, user_id):
            user = await self.ledger.get_user(user_id, fresh=True)
            days = await self._validate(user_id, dates)
            total_cost = cost * len(days)

            await self.ledger.debit(
                user,
                total_cost,
                LedgerReason.BACKFILL_PURCHASE,
                reference_id=purchase_id,
                description=f"Bought {len(days)} missed day(s)",
            )

            for day in days:
                event = await self.events.append_purchase(
                    user_id, day, today=today, now=now, coins_earned=reward
                )
                if reward > 0:
                    await self.ledger.credit(
                        user,
                        reward,
                        LedgerReason.BACKFILL_REWARD,
                        reference_id=str(event.id),
                        description=f"Attendance reward for {day.isoformat()}",
                    )

            summary = await self.summaries.project(user)

        await self.ledger.invalidate_balance_cache(user_id)
        record_missed_days_purchased(len(days))
        logger.info(
            f"Missed days purchased: user={user_id[:8]}... count={len(days)} "
            f"cost={total_cost} reward={reward * len(days)}"
        )

        return {
            "purchase_id": purchase_id,
            "dates": [d.isoformat() for d in days],
            "count": len(days),
            "total_cost": total_cost,
            "total_reward": reward * len(days),
            "net_cost": (cost - reward) * len(days),
            "balance": user.coin_balance,
            "summary": summary.to_dict(),
        }


def _parse_date(raw: Any) -> date | None:
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw))
    except ValueError:
        return None
