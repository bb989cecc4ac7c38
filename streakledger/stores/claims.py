"""Claim store: the (user, milestone, period) uniqueness gate."""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from streakledger.models.milestone import (
    ClaimRecord,
    MilestoneDefinition,
    PermissionGrant,
)
from streakledger.utils.errors import AlreadyClaimedError


class ClaimStore:
    """SQLAlchemy-backed claim records and permission grants."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert_claim(
        self,
        user_id: str,
        milestone: MilestoneDefinition,
        period_key: str,
        *,
        streak_snapshot: int,
        claimed_at: datetime,
    ) -> ClaimRecord:
        """Insert a claim record, copying the milestone's reward onto it.

        Raises:
            AlreadyClaimedError: the unique constraint rejected the insert
        """
        milestone_id = milestone.id
        claim = ClaimRecord(
            user_id=user_id,
            milestone_id=milestone_id,
            period_key=period_key,
            claimed_at=claimed_at,
            streak_snapshot=streak_snapshot,
            reward_type=milestone.reward_type,
            reward_value=milestone.reward_value,
            permission_code=milestone.permission_code,
            reward_granted=False,
        )
        self.session.add(claim)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise AlreadyClaimedError(milestone_id, period_key) from e
        return claim

    async def get_claim(
        self, user_id: str, milestone_id: str, period_key: str
    ) -> ClaimRecord | None:
        result = await self.session.execute(
            select(ClaimRecord)
            .where(ClaimRecord.user_id == user_id)
            .where(ClaimRecord.milestone_id == milestone_id)
            .where(ClaimRecord.period_key == period_key)
        )
        return result.scalar_one_or_none()

    async def claims_for_periods(
        self, user_id: str, period_keys: list[str]
    ) -> dict[tuple[str, str], ClaimRecord]:
        """User's claims in the given periods keyed by (milestone_id, period_key)."""
        result = await self.session.execute(
            select(ClaimRecord)
            .where(ClaimRecord.user_id == user_id)
            .where(ClaimRecord.period_key.in_(period_keys))
        )
        return {(c.milestone_id, c.period_key): c for c in result.scalars().all()}

    async def list_for_user(
        self, user_id: str, *, limit: int = 50, offset: int = 0
    ) -> tuple[list[ClaimRecord], int]:
        """Claim history, newest first, plus the total count."""
        result = await self.session.execute(
            select(ClaimRecord)
            .where(ClaimRecord.user_id == user_id)
            .order_by(ClaimRecord.claimed_at.desc())
            .offset(offset)
            .limit(limit)
        )
        claims = list(result.scalars().all())

        count_result = await self.session.execute(
            select(func.count())
            .select_from(ClaimRecord)
            .where(ClaimRecord.user_id == user_id)
        )
        return claims, count_result.scalar() or 0

    async def list_pending(
        self, user_id: str | None = None, *, limit: int = 500
    ) -> list[ClaimRecord]:
        """Claims whose reward was never granted, oldest first."""
        query = (
            select(ClaimRecord)
            .where(ClaimRecord.reward_granted.is_(False))
            .order_by(ClaimRecord.claimed_at)
            .limit(limit)
        )
        if user_id:
            query = query.where(ClaimRecord.user_id == user_id)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_permission(
        self, user_id: str, permission_code: str
    ) -> PermissionGrant | None:
        result = await self.session.execute(
            select(PermissionGrant)
            .where(PermissionGrant.user_id == user_id)
            .where(PermissionGrant.permission_code == permission_code)
        )
        return result.scalar_one_or_none()

    async def list_permissions(self, user_id: str) -> list[PermissionGrant]:
        result = await self.session.execute(
            select(PermissionGrant)
            .where(PermissionGrant.user_id == user_id)
            .where(PermissionGrant.is_active.is_(True))
            .order_by(PermissionGrant.granted_at)
        )
        return list(result.scalars().all())

    async def grant_permission(
        self,
        user_id: str,
        permission_code: str,
        *,
        source_claim_id: str,
        granted_at: datetime,
    ) -> PermissionGrant:
        """Create the grant, or re-activate an existing one."""
        grant = await self.get_permission(user_id, permission_code)
        if grant is None:
            grant = PermissionGrant(
                user_id=user_id,
                permission_code=permission_code,
                source_claim_id=source_claim_id,
                granted_at=granted_at,
                is_active=True,
            )
            self.session.add(grant)
        elif not grant.is_active:
            grant.is_active = True
            grant.source_claim_id = source_claim_id
            grant.granted_at = granted_at
        await self.session.flush()
        return grant
