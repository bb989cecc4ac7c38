"""Milestone catalog service (admin managed)."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from streakledger.models.milestone import MilestoneDefinition, MilestoneScope, RewardType
from streakledger.utils.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "required_days",
    "reward_type",
    "reward_value",
    "permission_code",
    "title",
    "description",
    "is_active",
)


class MilestoneCatalogService:
    """CRUD of milestone definitions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, milestone_id: str, *, active_only: bool = False) -> MilestoneDefinition:
        milestone = await self.db.get(MilestoneDefinition, milestone_id)
        if milestone is None or (active_only and not milestone.is_active):
            raise NotFoundError("Milestone", milestone_id)
        return milestone

    async def list_milestones(
        self,
        *,
        active_only: bool = True,
        scope: MilestoneScope | None = None,
    ) -> list[MilestoneDefinition]:
        query = select(MilestoneDefinition).order_by(
            MilestoneDefinition.scope, MilestoneDefinition.required_days
        )
        if active_only:
            query = query.where(MilestoneDefinition.is_active.is_(True))
        if scope:
            query = query.where(MilestoneDefinition.scope == scope)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create(
        self,
        *,
        scope: MilestoneScope,
        required_days: int,
        reward_type: RewardType,
        title: str,
        reward_value: int = 0,
        permission_code: str | None = None,
        description: str = "",
        is_active: bool = True,
    ) -> MilestoneDefinition:
        """Create a milestone definition.

        Raises:
            ValidationError: invalid threshold or reward
            ConflictError: another active definition has the same
                (scope, required_days)
        """
        milestone = MilestoneDefinition(
            scope=scope,
            required_days=required_days,
            reward_type=reward_type,
            reward_value=reward_value,
            permission_code=permission_code,
            title=title,
            description=description,
            is_active=is_active,
        )
        _validate_definition(milestone)
        if milestone.is_active:
            await self._check_collision(milestone)

        self.db.add(milestone)
        await self._commit(milestone)

        logger.info(
            f"Milestone created: {milestone.scope.value}:{milestone.required_days} "
            f"reward={milestone.reward_type.value}"
        )
        return milestone

    async def update(self, milestone_id: str, changes: dict[str, Any]) -> MilestoneDefinition:
        """Apply a partial update. Unknown fields are rejected."""
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                "Unknown milestone fields",
                {"fields": sorted(unknown)},
            )

        milestone = await self.get(milestone_id)
        for field, value in changes.items():
            setattr(milestone, field, value)

        try:
            _validate_definition(milestone)
            if milestone.is_active:
                await self._check_collision(milestone)
        except Exception:
            await self.db.rollback()
            raise

        await self._commit(milestone)
        logger.info(f"Milestone updated: {milestone_id} fields={sorted(changes)}")
        return milestone

    async def deactivate(self, milestone_id: str) -> MilestoneDefinition:
        """Soft delete. Claim records keep referencing the definition."""
        milestone = await self.get(milestone_id)
        if milestone.is_active:
            milestone.is_active = False
            await self._commit(milestone)
            logger.info(f"Milestone deactivated: {milestone_id}")
        return milestone

    async def _check_collision(self, milestone: MilestoneDefinition) -> None:
        query = (
            select(MilestoneDefinition.id)
            .where(MilestoneDefinition.scope == milestone.scope)
            .where(MilestoneDefinition.required_days == milestone.required_days)
            .where(MilestoneDefinition.is_active.is_(True))
        )
        if milestone.id:
            query = query.where(MilestoneDefinition.id != milestone.id)

        result = await self.db.execute(query)
        existing = result.scalar_one_or_none()
        if existing:
            raise _collision_error(milestone, existing)

    async def _commit(self, milestone: MilestoneDefinition) -> None:
        # The partial unique index is the final guard against a concurrent
        # create of the same threshold.
        scope, required_days = milestone.scope, milestone.required_days
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(
                "An active milestone already uses this threshold",
                details={"scope": scope.value, "requiredDays": required_days},
            ) from e


def _validate_definition(milestone: MilestoneDefinition) -> None:
    if milestone.required_days is None or milestone.required_days < 1:
        raise ValidationError(
            "required_days must be at least 1",
            {"requiredDays": milestone.required_days},
        )
    if milestone.reward_type == RewardType.COIN:
        if not milestone.reward_value or milestone.reward_value <= 0:
            raise ValidationError(
                "Coin rewards need a positive reward_value",
                {"rewardValue": milestone.reward_value},
            )
    elif not milestone.permission_code:
        raise ValidationError("Permission rewards need a permission_code")
    if not milestone.title:
        raise ValidationError("title is required")


def _collision_error(milestone: MilestoneDefinition, existing_id: str) -> ConflictError:
    return ConflictError(
        "An active milestone already uses this threshold",
        details={
            "scope": milestone.scope.value,
            "requiredDays": milestone.required_days,
            "existingId": existing_id,
        },
    )


def milestone_dict(milestone: MilestoneDefinition) -> dict[str, Any]:
    return {
        "id": milestone.id,
        "scope": milestone.scope.value,
        "required_days": milestone.required_days,
        "reward_type": milestone.reward_type.value,
        "reward_value": milestone.reward_value,
        "permission_code": milestone.permission_code,
        "title": milestone.title,
        "description": milestone.description,
        "is_active": milestone.is_active,
    }
