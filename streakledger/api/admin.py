"""Internal admin API: milestone catalog and ledger maintenance.

Every endpoint requires the X-API-Key header.
"""

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from streakledger.api.deps import ClockDep, DbSession, RedisDep, verify_api_key
from streakledger.models.milestone import MilestoneScope, RewardType
from streakledger.services.claims import ClaimService
from streakledger.services.ledger import LedgerService
from streakledger.services.milestones import MilestoneCatalogService, milestone_dict

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal/admin",
    tags=["Internal Admin"],
    dependencies=[Depends(verify_api_key)],
)


# ============================================================================
# Request/Response Models
# ============================================================================


class MilestoneCreateRequest(BaseModel):
    scope: MilestoneScope
    required_days: int = Field(..., ge=1)
    reward_type: RewardType
    reward_value: int = Field(0, ge=0)
    permission_code: str | None = Field(None, max_length=100)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    is_active: bool = True


class MilestoneUpdateRequest(BaseModel):
    required_days: int | None = Field(None, ge=1)
    reward_type: RewardType | None = None
    reward_value: int | None = Field(None, ge=0)
    permission_code: str | None = Field(None, max_length=100)
    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    is_active: bool | None = None


class MilestoneResponse(BaseModel):
    id: str
    scope: MilestoneScope
    required_days: int
    reward_type: RewardType
    reward_value: int
    permission_code: str | None
    title: str
    description: str
    is_active: bool


class ReconcileResponse(BaseModel):
    user_id: str
    balance: int
    ledger_sum: int
    entries: int
    frozen: bool
    consistent: bool


class AdjustRequest(BaseModel):
    amount: int = Field(..., description="Signed amount; negative removes coins")
    reference_id: str = Field(..., min_length=1, max_length=64)
    description: str | None = Field(None, max_length=255)


class AdjustResponse(BaseModel):
    entry_id: str
    sequence: int
    amount: int
    balance: int


class SettleResponse(BaseModel):
    pending: int
    settled: int
    failed: list[str]


# ============================================================================
# Milestone catalog
# ============================================================================


@router.get("/milestones", response_model=list[MilestoneResponse])
async def list_milestones(
    db: DbSession,
    include_inactive: bool = Query(False),
    scope: MilestoneScope | None = Query(None),
):
    service = MilestoneCatalogService(db)
    milestones = await service.list_milestones(active_only=not include_inactive, scope=scope)
    return [MilestoneResponse(**milestone_dict(m)) for m in milestones]


@router.get("/milestones/{milestone_id}", response_model=MilestoneResponse)
async def get_milestone(milestone_id: str, db: DbSession):
    milestone = await MilestoneCatalogService(db).get(milestone_id)
    return MilestoneResponse(**milestone_dict(milestone))


@router.post("/milestones", response_model=MilestoneResponse, status_code=201)
async def create_milestone(request: MilestoneCreateRequest, db: DbSession):
    """Create a milestone. An active duplicate (scope, required_days) is a 409."""
    milestone = await MilestoneCatalogService(db).create(**request.model_dump())
    return MilestoneResponse(**milestone_dict(milestone))


@router.patch("/milestones/{milestone_id}", response_model=MilestoneResponse)
async def update_milestone(
    milestone_id: str,
    request: MilestoneUpdateRequest,
    db: DbSession,
):
    changes = request.model_dump(exclude_unset=True)
    milestone = await MilestoneCatalogService(db).update(milestone_id, changes)
    return MilestoneResponse(**milestone_dict(milestone))


@router.delete("/milestones/{milestone_id}", response_model=MilestoneResponse)
async def deactivate_milestone(milestone_id: str, db: DbSession):
    """Deactivate (soft delete); existing claims keep their reference."""
    milestone = await MilestoneCatalogService(db).deactivate(milestone_id)
    return MilestoneResponse(**milestone_dict(milestone))


# ============================================================================
# Ledger maintenance
# ============================================================================


@router.post("/ledger/{user_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_user(user_id: str, db: DbSession, clock: ClockDep, redis: RedisDep):
    """Check a user's cached balance against the ledger.

    A mismatch freezes the user's balance and returns 500 INTERNAL_INCONSISTENCY.
    """
    service = LedgerService(db, redis=redis, clock=clock)
    return ReconcileResponse(**await service.reconcile(user_id))


@router.post("/ledger/{user_id}/adjust", response_model=AdjustResponse)
async def adjust_balance(
    user_id: str,
    request: AdjustRequest,
    db: DbSession,
    clock: ClockDep,
    redis: RedisDep,
):
    """Credit or debit a user as an operator. Each reference_id applies once."""
    service = LedgerService(db, redis=redis, clock=clock)
    entry = await service.adjust(
        user_id,
        request.amount,
        reference_id=request.reference_id,
        description=request.description,
    )
    return AdjustResponse(
        entry_id=entry.id,
        sequence=entry.sequence,
        amount=entry.amount,
        balance=entry.balance_after,
    )


@router.post("/claims/settle", response_model=SettleResponse)
async def settle_pending_rewards(
    db: DbSession,
    clock: ClockDep,
    redis: RedisDep,
    user_id: str | None = Query(None),
):
    """Grant rewards of claims whose reward step never completed."""
    service = ClaimService(db, clock, redis=redis)
    result = await service.settle_pending_rewards(user_id)
    logger.info(f"Admin settlement: {result}")
    return SettleResponse(**result)
