"""Tests for ClaimService.

Claims are gated by the unique (user, milestone, period) constraint; rewards
are granted in a second step that is safe to repeat.
"""

import asyncio
from datetime import date

import pytest
from sqlalchemy import func, select

from streakledger.clock import FixedClock
from streakledger.models.ledger import LedgerEntry, LedgerReason
from streakledger.models.milestone import (
    LIFETIME_PERIOD,
    ClaimRecord,
    MilestoneScope,
    RewardType,
)
from streakledger.services.claims import ClaimService
from streakledger.services.ledger import LedgerService
from streakledger.services.milestones import MilestoneCatalogService
from streakledger.services.summary import SummaryService
from streakledger.stores.claims import ClaimStore
from streakledger.utils.errors import (
    AlreadyClaimedError,
    InsufficientProgressError,
    NotFoundError,
)


def jan(day: int) -> date:
    return date(2024, 1, day)


@pytest.fixture
def clock():
    """Jan 7: a week of attendance ends today."""
    return FixedClock(jan(7))


@pytest.fixture
def service(db, clock, settings):
    return ClaimService(db, clock, settings=settings)


@pytest.fixture
def catalog(db):
    return MilestoneCatalogService(db)


@pytest.fixture
def weekly(catalog):
    async def _create():
        return await catalog.create(
            scope=MilestoneScope.MONTHLY,
            required_days=7,
            reward_type=RewardType.COIN,
            reward_value=100,
            title="7-day streak",
        )

    return _create


async def reward_entries(db, user_id):
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.user_id == user_id)
        .where(LedgerEntry.reason == LedgerReason.MILESTONE_REWARD)
    )
    return list(result.scalars().all())


async def claim_count(db, user_id):
    result = await db.execute(
        select(func.count()).select_from(ClaimRecord).where(ClaimRecord.user_id == user_id)
    )
    return result.scalar()


class TestMonthlyClaims:
    """Tests for monthly (current streak) milestones."""

    @pytest.mark.asyncio
    async def test_claim_once_per_month(self, db, service, user, weekly, add_events):
        user_id = user.id
        milestone = await weekly()
        await add_events(user_id, [jan(d) for d in range(1, 8)])

        result = await service.claim(user_id, milestone.id)

        claim = result["claim"]
        assert claim["period_key"] == "2024-01"
        assert claim["period"] == {"month": 1, "year": 2024}
        assert claim["streak_snapshot"] == 7
        assert claim["reward_granted"] is True
        assert result["balance"] == 100
        assert result["milestone"]["id"] == milestone.id

        with pytest.raises(AlreadyClaimedError) as exc_info:
            await service.claim(user_id, milestone.id)

        assert exc_info.value.details["claimId"] == claim["id"]
        assert await claim_count(db, user_id) == 1
        assert len(await reward_entries(db, user_id)) == 1

    @pytest.mark.asyncio
    async def test_insufficient_progress(self, db, service, user, weekly, add_events):
        user_id = user.id
        milestone = await weekly()
        await add_events(user_id, [jan(5), jan(6), jan(7)])

        with pytest.raises(InsufficientProgressError) as exc_info:
            await service.claim(user_id, milestone.id)

        assert exc_info.value.details == {"required": 7, "current": 3, "scope": "monthly"}
        assert await claim_count(db, user_id) == 0

    @pytest.mark.asyncio
    async def test_claimable_again_next_month(self, db, settings, user, weekly, add_events):
        milestone = await weekly()
        await add_events(user.id, [date(2024, 1, d) for d in range(25, 32)])
        await add_events(user.id, [date(2024, 2, 1)])

        january = ClaimService(db, FixedClock(date(2024, 1, 31)), settings=settings)
        february = ClaimService(db, FixedClock(date(2024, 2, 1)), settings=settings)

        first = await january.claim(user.id, milestone.id)
        second = await february.claim(user.id, milestone.id)

        assert first["claim"]["period_key"] == "2024-01"
        assert second["claim"]["period_key"] == "2024-02"
        assert second["balance"] == 200

    @pytest.mark.asyncio
    async def test_inactive_milestone(self, service, catalog, user, weekly, add_events):
        milestone = await weekly()
        await catalog.deactivate(milestone.id)
        await add_events(user.id, [jan(d) for d in range(1, 8)])

        with pytest.raises(NotFoundError):
            await service.claim(user.id, milestone.id)


class TestLifetimeClaims:
    @pytest.mark.asyncio
    async def test_lifetime_claimed_once_ever(self, db, settings, catalog, user, add_events):
        user_id = user.id
        milestone = await catalog.create(
            scope=MilestoneScope.LIFETIME,
            required_days=3,
            reward_type=RewardType.COIN,
            reward_value=40,
            title="3 days total",
        )
        await add_events(user_id, [jan(1), jan(3), jan(5)])
        service = ClaimService(db, FixedClock(jan(7)), settings=settings)

        result = await service.claim(user_id, milestone.id)

        assert result["claim"]["period_key"] == LIFETIME_PERIOD
        assert result["claim"]["period"] is None
        assert result["claim"]["streak_snapshot"] == 3

        # Doubling total days later does not reopen it
        await add_events(user_id, [date(2024, 2, d) for d in range(1, 4)])
        later = ClaimService(db, FixedClock(date(2024, 2, 3)), settings=settings)
        with pytest.raises(AlreadyClaimedError):
            await later.claim(user_id, milestone.id)

        assert len(await reward_entries(db, user_id)) == 1

    @pytest.mark.asyncio
    async def test_permission_reward(self, db, service, catalog, user, add_events):
        milestone = await catalog.create(
            scope=MilestoneScope.LIFETIME,
            required_days=1,
            reward_type=RewardType.PERMISSION,
            permission_code="custom_badge",
            title="First day",
        )
        await add_events(user.id, [jan(7)])

        result = await service.claim(user.id, milestone.id)
        permissions = await service.list_permissions(user.id)

        assert result["balance"] == 0
        assert result["claim"]["permission_code"] == "custom_badge"
        assert [p["permission_code"] for p in permissions] == ["custom_badge"]
        assert permissions[0]["source_claim_id"] == result["claim"]["id"]
        assert await reward_entries(db, user.id) == []


class TestMilestoneListing:
    @pytest.mark.asyncio
    async def test_progress_and_eligibility(self, service, catalog, user, weekly, add_events):
        milestone = await weekly()
        await catalog.create(
            scope=MilestoneScope.LIFETIME,
            required_days=10,
            reward_type=RewardType.COIN,
            reward_value=500,
            title="10 days total",
        )
        await add_events(user.id, [jan(d) for d in range(1, 8)])

        before = await service.list_for_user(user.id)
        await service.claim(user.id, milestone.id)
        after = await service.list_for_user(user.id)

        assert before["current_streak"] == 7
        assert before["monthly"][0]["eligible"] is True
        assert before["monthly"][0]["progress"] == 100
        assert before["lifetime"][0]["eligible"] is False
        assert before["lifetime"][0]["progress"] == 70

        assert after["monthly"][0]["claimed"] is True
        assert after["monthly"][0]["eligible"] is False
        assert after["monthly"][0]["reward_granted"] is True

    @pytest.mark.asyncio
    async def test_claim_history(self, service, user, weekly, add_events):
        milestone = await weekly()
        await add_events(user.id, [jan(d) for d in range(1, 8)])
        await service.claim(user.id, milestone.id)

        history = await service.claim_history(user.id)

        assert history["total"] == 1
        assert history["items"][0]["milestone_id"] == milestone.id


class TestRewardSettlement:
    """Claims whose reward step never ran are settled later."""

    async def insert_pending(self, db, clock, user_id, milestone):
        claim = await ClaimStore(db).insert_claim(
            user_id,
            milestone,
            "2024-01",
            streak_snapshot=7,
            claimed_at=clock.now(),
        )
        await db.commit()
        return claim

    @pytest.mark.asyncio
    async def test_settle_pending_rewards(self, db, clock, service, user, weekly):
        milestone = await weekly()
        await self.insert_pending(db, clock, user.id, milestone)

        result = await service.settle_pending_rewards()
        again = await service.settle_pending_rewards()

        assert result == {"pending": 1, "settled": 1, "failed": []}
        assert again == {"pending": 0, "settled": 0, "failed": []}
        assert await service.ledger.get_balance(user.id) == 100
        assert len(await reward_entries(db, user.id)) == 1

    @pytest.mark.asyncio
    async def test_reclaim_settles_interrupted_claim(
        self, db, clock, service, user, weekly, add_events
    ):
        user_id = user.id
        milestone = await weekly()
        await add_events(user_id, [jan(d) for d in range(1, 8)])
        claim = await self.insert_pending(db, clock, user_id, milestone)
        claim_id = claim.id

        with pytest.raises(AlreadyClaimedError):
            await service.claim(user_id, milestone.id)

        reloaded = await db.get(ClaimRecord, claim_id, populate_existing=True)
        assert reloaded.reward_granted is True
        assert await service.ledger.get_balance(user_id) == 100

    @pytest.mark.asyncio
    async def test_grant_reward_is_idempotent(self, db, clock, service, user, weekly):
        milestone = await weekly()
        claim = await self.insert_pending(db, clock, user.id, milestone)

        await service.grant_reward(claim)
        await service.grant_reward(claim)

        assert len(await reward_entries(db, user.id)) == 1


class TestConcurrentClaims:
    @pytest.mark.asyncio
    async def test_parallel_claims_issue_one_reward(
        self, db, session_factory, clock, settings, user, weekly, add_events
    ):
        user_id = user.id
        milestone = await weekly()
        await add_events(user_id, [jan(d) for d in range(1, 8)])
        # Cache the summary so both claimers only read it
        await SummaryService(db, clock).refresh(user_id)

        async with session_factory() as first, session_factory() as second:
            results = await asyncio.gather(
                ClaimService(first, clock, settings=settings).claim(user_id, milestone.id),
                ClaimService(second, clock, settings=settings).claim(user_id, milestone.id),
                return_exceptions=True,
            )

        successes = [r for r in results if isinstance(r, dict)]
        conflicts = [r for r in results if isinstance(r, AlreadyClaimedError)]
        assert len(successes) == 1
        assert len(conflicts) == 1

        assert await claim_count(db, user_id) == 1
        assert len(await reward_entries(db, user_id)) == 1
        assert await LedgerService(db, clock=clock).get_balance(user_id) == 100
