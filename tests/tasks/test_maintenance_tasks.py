"""Tests for the scheduled maintenance jobs.

The Celery tasks are thin ``asyncio.run`` wrappers; the async helpers they
call are tested directly against the test database.
"""

from datetime import date
from unittest.mock import patch

import pytest
from sqlalchemy import update

from streakledger.clock import FixedClock
from streakledger.models.milestone import MilestoneScope, RewardType
from streakledger.models.user import User
from streakledger.services.milestones import MilestoneCatalogService
from streakledger.stores.claims import ClaimStore
from streakledger.tasks.attendance import refresh_summaries
from streakledger.tasks.ledger import reconcile_ledgers, settle_pending_rewards
from streakledger.tasks.schedules import CELERY_BEAT_SCHEDULE, CELERY_TASK_ROUTES


class TestSummaryRefresh:
    @pytest.mark.asyncio
    async def test_refresh_decays_lapsed_streaks(self, db, session_factory, make_user, add_events):
        lapsed = await make_user("lapsed")
        active = await make_user("active")
        await add_events(lapsed.id, [date(2024, 1, 1), date(2024, 1, 2)])
        await add_events(active.id, [date(2024, 1, 9), date(2024, 1, 10)])

        first = await refresh_summaries(session_factory, today=date(2024, 1, 2))
        second = await refresh_summaries(session_factory, today=date(2024, 1, 10))

        assert first["refreshed"] == 2
        assert second["status"] == "success"
        assert second["reference_day"] == "2024-01-10"

        lapsed_row = await db.get(User, lapsed.id, populate_existing=True)
        active_row = await db.get(User, active.id, populate_existing=True)
        assert lapsed_row.current_streak == 0
        assert lapsed_row.longest_streak == 2
        assert active_row.current_streak == 2
        assert active_row.summary_computed_on == date(2024, 1, 10)

    @pytest.mark.asyncio
    async def test_only_stale_skips_fresh_summaries(self, session_factory, make_user):
        await make_user("one")
        await make_user("two")

        await refresh_summaries(session_factory, today=date(2024, 1, 10))
        again = await refresh_summaries(session_factory, today=date(2024, 1, 10))
        forced = await refresh_summaries(
            session_factory, today=date(2024, 1, 10), only_stale=False
        )

        assert again["refreshed"] == 0
        assert forced["refreshed"] == 2


class TestLedgerJobs:
    @pytest.mark.asyncio
    async def test_reconcile_flags_drifted_users(self, db, session_factory, make_user, fund):
        good = await make_user("good")
        bad = await make_user("bad")
        await fund(good.id, 30)
        await fund(bad.id, 30)
        await db.execute(update(User).where(User.id == bad.id).values(coin_balance=31))
        await db.commit()

        with patch("streakledger.services.ledger.capture_ledger_error"):
            result = await reconcile_ledgers(session_factory)

        assert result["status"] == "success"
        assert result["checked"] == 2
        assert result["inconsistent"] == [bad.id]

    @pytest.mark.asyncio
    async def test_settle_pending_rewards(self, db, session_factory, user, clock):
        milestone = await MilestoneCatalogService(db).create(
            scope=MilestoneScope.LIFETIME,
            required_days=1,
            reward_type=RewardType.COIN,
            reward_value=25,
            title="First day",
        )
        await ClaimStore(db).insert_claim(
            user.id,
            milestone,
            "lifetime",
            streak_snapshot=1,
            claimed_at=clock.now(),
        )
        await db.commit()

        result = await settle_pending_rewards(session_factory, clock=FixedClock(clock.today()))

        assert result["pending"] == 1
        assert result["settled"] == 1
        refreshed = await db.get(User, user.id, populate_existing=True)
        assert refreshed.coin_balance == 25


class TestSchedule:
    def test_every_scheduled_task_is_routed(self):
        for entry in CELERY_BEAT_SCHEDULE.values():
            module = entry["task"].rsplit(".", 1)[0]
            assert f"{module}.*" in CELERY_TASK_ROUTES
