"""Claim service: milestone eligibility and idempotent reward issuance.

A claim is two separate commits:

1. insert the claim record; the unique (user, milestone, period) constraint
   decides the winner of concurrent claims
2. apply the reward and flip ``reward_granted``

Step 2 is retried from the claim record's own state (a later claim attempt,
or the settlement job), and the ledger's unique (user, reason, reference)
constraint keeps a coin reward from landing twice.
"""

import logging
from typing import Any

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from streakledger.clock import Clock
from streakledger.config import Settings, get_settings
from streakledger.middleware.prometheus import record_claim
from streakledger.models.ledger import LedgerReason
from streakledger.models.milestone import (
    LIFETIME_PERIOD,
    ClaimRecord,
    MilestoneDefinition,
    MilestoneScope,
    RewardType,
    monthly_period_key,
)
from streakledger.services.ledger import LedgerService
from streakledger.services.milestones import MilestoneCatalogService, milestone_dict
from streakledger.services.streak_projector import StreakSummary
from streakledger.services.summary import SummaryService
from streakledger.stores.claims import ClaimStore
from streakledger.utils.db import user_transaction
from streakledger.utils.errors import (
    AlreadyClaimedError,
    ConflictError,
    InsufficientProgressError,
    LedgerError,
)

logger = logging.getLogger(__name__)


def progress_for(milestone: MilestoneDefinition, summary: StreakSummary) -> int:
    """Days counted toward a milestone: current streak (monthly) or total days (lifetime)."""
    if milestone.scope == MilestoneScope.MONTHLY:
        return summary.current_streak
    return summary.total_days


class ClaimService:
    """Milestone listing, claiming and reward settlement."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        redis: Redis | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.clock = clock
        settings = settings or get_settings()
        self.claims = ClaimStore(db)
        self.catalog = MilestoneCatalogService(db)
        self.summaries = SummaryService(db, clock)
        self.ledger = LedgerService(
            db, redis=redis, clock=clock, cache_ttl=settings.balance_cache_ttl
        )

    def period_key_for(self, milestone: MilestoneDefinition) -> str:
        if milestone.scope == MilestoneScope.MONTHLY:
            return monthly_period_key(self.clock.today())
        return LIFETIME_PERIOD

    async def list_for_user(self, user_id: str) -> dict[str, Any]:
        """Active milestones with the user's progress, split by scope."""
        summary = await self.summaries.refresh(user_id)
        milestones = await self.catalog.list_milestones(active_only=True)

        current_month = monthly_period_key(self.clock.today())
        claimed = await self.claims.claims_for_periods(
            user_id, [current_month, LIFETIME_PERIOD]
        )

        result: dict[str, Any] = {
            "monthly": [],
            "lifetime": [],
            "current_streak": summary.current_streak,
            "total_days": summary.total_days,
        }
        for milestone in milestones:
            current = progress_for(milestone, summary)
            claim = claimed.get((milestone.id, self.period_key_for(milestone)))
            result[milestone.scope.value].append({
                "milestone": milestone_dict(milestone),
                "current": current,
                "progress": min(100, current * 100 // milestone.required_days),
                "eligible": claim is None and current >= milestone.required_days,
                "claimed": claim is not None,
                "claimed_at": claim.claimed_at.isoformat() if claim else None,
                "reward_granted": claim.reward_granted if claim else False,
            })
        return result

    async def claim(self, user_id: str, milestone_id: str) -> dict[str, Any]:
        """Claim a milestone reward for the current period.

        Raises:
            NotFoundError: milestone missing or inactive, or unknown user
            InsufficientProgressError: threshold not reached
            AlreadyClaimedError: a claim for this period exists
        """
        milestone = await self.catalog.get(milestone_id, active_only=True)
        scope = milestone.scope.value
        required = milestone.required_days
        milestone_data = milestone_dict(milestone)

        summary = await self.summaries.refresh(user_id)
        current = progress_for(milestone, summary)
        if current < required:
            record_claim(scope, "insufficient")
            raise InsufficientProgressError(required, current, scope)

        period_key = self.period_key_for(milestone)

        try:
            async with user_transaction(self.db, user_id):
                claim = await self.claims.insert_claim(
                    user_id,
                    milestone,
                    period_key,
                    streak_snapshot=current,
                    claimed_at=self.clock.now(),
                )
        except AlreadyClaimedError as e:
            record_claim(scope, "already_claimed")
            existing = await self.claims.get_claim(user_id, milestone_id, period_key)
            if existing is not None:
                e.details["claimId"] = existing.id
                if not existing.reward_granted:
                    # Earlier attempt died between the two commits, or the
                    # winner of a concurrent claim is still granting
                    await self._settle_quietly(existing)
            raise e

        claim = await self.grant_reward(claim)
        record_claim(scope, "claimed")
        logger.info(
            f"Milestone claimed: user={user_id[:8]}... milestone={milestone_id} "
            f"period={period_key} snapshot={current}"
        )

        return {
            "claim": claim_dict(claim),
            "milestone": milestone_data,
            "balance": await self.ledger.get_balance(user_id),
        }

    async def grant_reward(self, claim: ClaimRecord) -> ClaimRecord:
        """Apply a claim's reward once. Safe to call any number of times.

        Returns:
            The claim, reloaded if another writer granted it first
        """
        if claim.reward_granted:
            return claim

        claim_id = claim.id
        user_id = claim.user_id

        try:
            async with user_transaction(self.db, user_id):
                user = await self.ledger.get_user(user_id, fresh=True)
                now = self.clock.now()

                if claim.reward_type == RewardType.COIN:
                    if not await self.ledger.has_entry(
                        user_id, LedgerReason.MILESTONE_REWARD, claim_id
                    ):
                        await self.ledger.credit(
                            user,
                            claim.reward_value,
                            LedgerReason.MILESTONE_REWARD,
                            reference_id=claim_id,
                            description=f"Milestone reward ({claim.period_key})",
                        )
                else:
                    await self.claims.grant_permission(
                        user_id,
                        claim.permission_code,
                        source_claim_id=claim_id,
                        granted_at=now,
                    )

                claim.reward_granted = True
                claim.reward_granted_at = now
        except ConflictError:
            reloaded = await self.db.get(ClaimRecord, claim_id, populate_existing=True)
            if reloaded is not None and reloaded.reward_granted:
                return reloaded
            raise

        await self.ledger.invalidate_balance_cache(user_id)
        return claim

    async def _settle_quietly(self, claim: ClaimRecord) -> None:
        claim_id = claim.id
        try:
            await self.grant_reward(claim)
        except LedgerError as e:
            logger.warning(f"Pending reward not settled: claim={claim_id} code={e.code}")

    async def settle_pending_rewards(self, user_id: str | None = None) -> dict[str, Any]:
        """Grant rewards of claims left ungranted. Safe to re-run."""
        # A failed grant rolls the session back and expires loaded rows
        pending_ids = [c.id for c in await self.claims.list_pending(user_id)]
        settled = 0
        failed: list[str] = []

        for claim_id in pending_ids:
            try:
                claim = await self.db.get(ClaimRecord, claim_id, populate_existing=True)
                if claim is None:
                    continue
                await self.grant_reward(claim)
                settled += 1
            except LedgerError as e:
                failed.append(claim_id)
                logger.warning(f"Pending reward not settled: claim={claim_id} code={e.code}")

        if pending_ids:
            logger.info(f"Pending rewards: settled={settled} failed={len(failed)}")
        return {"pending": len(pending_ids), "settled": settled, "failed": failed}

    async def claim_history(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> dict[str, Any]:
        await self.ledger.get_user(user_id)
        claims, total = await self.claims.list_for_user(user_id, limit=limit, offset=offset)
        return {
            "items": [claim_dict(c) for c in claims],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    async def list_permissions(self, user_id: str) -> list[dict[str, Any]]:
        await self.ledger.get_user(user_id)
        grants = await self.claims.list_permissions(user_id)
        return [
            {
                "permission_code": g.permission_code,
                "source_claim_id": g.source_claim_id,
                "granted_at": g.granted_at.isoformat(),
            }
            for g in grants
        ]


def claim_dict(claim: ClaimRecord) -> dict[str, Any]:
    period = claim.period
    return {
        "id": claim.id,
        "milestone_id": claim.milestone_id,
        "period_key": claim.period_key,
        "period": {"month": period[0], "year": period[1]} if period else None,
        "claimed_at": claim.claimed_at.isoformat(),
        "streak_snapshot": claim.streak_snapshot,
        "reward_type": claim.reward_type.value,
        "reward_value": claim.reward_value,
        "permission_code": claim.permission_code,
        "reward_granted": claim.reward_granted,
        "reward_granted_at": (
            claim.reward_granted_at.isoformat() if claim.reward_granted_at else None
        ),
    }
