"""Attendance API: check-in, summary, milestones and missed days."""

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from streakledger.api.deps import ClockDep, CurrentUser, DbSession, RedisDep
from streakledger.services.attendance import AttendanceService
from streakledger.services.backfill import BackfillService
from streakledger.services.claims import ClaimService

router = APIRouter(prefix="/attendance", tags=["Attendance"])


# ============================================================================
# Response Models
# ============================================================================


class CheckInResponse(BaseModel):
    """Result of a daily check-in."""
    date: str
    streak: int
    longest_streak: int
    total_days: int
    coins_earned: int
    reward_granted: bool
    balance: int


class SummaryResponse(BaseModel):
    total_days: int
    current_streak: int
    longest_streak: int
    last_attendance_date: str | None
    monthly_days: int
    purchased_days: int
    current_attended_run: int
    longest_attended_run: int


class StatusResponse(BaseModel):
    today: str
    checked_in_today: bool
    can_check_in: bool
    summary: SummaryResponse
    balance: int
    daily_reward: int


class HistoryItem(BaseModel):
    date: str
    status: str
    purchased: bool
    coins_earned: int
    created_at: str


class HistoryResponse(BaseModel):
    items: list[HistoryItem]
    total: int
    limit: int
    offset: int


class CalendarDay(BaseModel):
    date: str
    state: str
    coins_earned: int
    purchasable: bool


class CalendarResponse(BaseModel):
    month: int
    year: int
    days: list[CalendarDay]
    attended_days: int
    purchased_days: int
    missed_days: int
    total_days: int
    total_coins: int


class MonthStats(BaseModel):
    month: int
    total_days: int
    coins_earned: int


class YearStats(BaseModel):
    year: int
    total_days: int
    total_coins_earned: int
    purchased_days: int
    months: list[MonthStats]


class StatsResponse(BaseModel):
    overall: SummaryResponse
    year_stats: YearStats | None


class MilestoneInfo(BaseModel):
    id: str
    scope: str
    required_days: int
    reward_type: str
    reward_value: int
    permission_code: str | None
    title: str
    description: str
    is_active: bool


class MilestoneProgress(BaseModel):
    milestone: MilestoneInfo
    current: int
    progress: int
    eligible: bool
    claimed: bool
    claimed_at: str | None
    reward_granted: bool


class MilestoneListResponse(BaseModel):
    monthly: list[MilestoneProgress]
    lifetime: list[MilestoneProgress]
    current_streak: int
    total_days: int


class ClaimPeriod(BaseModel):
    month: int
    year: int


class ClaimInfo(BaseModel):
    id: str
    milestone_id: str
    period_key: str
    period: ClaimPeriod | None
    claimed_at: str
    streak_snapshot: int
    reward_type: str
    reward_value: int
    permission_code: str | None
    reward_granted: bool
    reward_granted_at: str | None


class ClaimResponse(BaseModel):
    claim: ClaimInfo
    milestone: MilestoneInfo
    balance: int


class ClaimHistoryResponse(BaseModel):
    items: list[ClaimInfo]
    total: int
    limit: int
    offset: int


class PermissionItem(BaseModel):
    permission_code: str
    source_claim_id: str | None
    granted_at: str


class PricingResponse(BaseModel):
    cost_per_day: int
    reward_per_day: int
    net_cost_per_day: int
    window_days: int


class MissedDaysResponse(PricingResponse):
    dates: list[str]
    count: int
    balance: int
    max_affordable: int


class PurchaseRequest(BaseModel):
    dates: list[str] = Field(..., min_length=1, description="Days to buy back (YYYY-MM-DD)")


class PurchaseResponse(BaseModel):
    purchase_id: str
    dates: list[str]
    count: int
    total_cost: int
    total_reward: int
    net_cost: int
    balance: int
    summary: SummaryResponse


# ============================================================================
# API Endpoints
# ============================================================================


@router.post("/check-in", response_model=CheckInResponse)
async def check_in(user: CurrentUser, db: DbSession, clock: ClockDep, redis: RedisDep):
    """Record today's attendance (reference timezone) and credit the daily reward."""
    service = AttendanceService(db, clock, redis=redis)
    return CheckInResponse(**await service.check_in(user.id))


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(user: CurrentUser, db: DbSession, clock: ClockDep, redis: RedisDep):
    service = AttendanceService(db, clock, redis=redis)
    return SummaryResponse(**await service.get_summary(user.id))


@router.get("/status", response_model=StatusResponse)
async def get_status(user: CurrentUser, db: DbSession, clock: ClockDep, redis: RedisDep):
    """Whether today is checked in, plus summary and balance."""
    service = AttendanceService(db, clock, redis=redis)
    return StatusResponse(**await service.get_status(user.id))


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    user: CurrentUser,
    db: DbSession,
    clock: ClockDep,
    redis: RedisDep,
    limit: int = Query(30, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    service = AttendanceService(db, clock, redis=redis)
    return HistoryResponse(**await service.get_history(user.id, limit=limit, offset=offset))


@router.get("/calendar", response_model=CalendarResponse)
async def get_calendar(
    user: CurrentUser,
    db: DbSession,
    clock: ClockDep,
    redis: RedisDep,
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = Query(None, ge=2000, le=9999),
):
    """Per-day attendance states of a month (defaults to the current month)."""
    today = clock.today()
    service = AttendanceService(db, clock, redis=redis)
    result = await service.get_calendar(
        user.id,
        month=month or today.month,
        year=year or today.year,
    )
    return CalendarResponse(**result)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    user: CurrentUser,
    db: DbSession,
    clock: ClockDep,
    redis: RedisDep,
    year: int | None = Query(None, ge=2000, le=9999),
):
    """Overall attendance stats; with `year`, that year's totals by month."""
    service = AttendanceService(db, clock, redis=redis)
    return StatsResponse(**await service.get_stats(user.id, year=year))


@router.get("/milestones", response_model=MilestoneListResponse)
async def list_milestones(user: CurrentUser, db: DbSession, clock: ClockDep, redis: RedisDep):
    """Active milestones with progress, eligibility and claim state."""
    service = ClaimService(db, clock, redis=redis)
    return MilestoneListResponse(**await service.list_for_user(user.id))


@router.post("/milestones/{milestone_id}/claim", response_model=ClaimResponse)
async def claim_milestone(
    milestone_id: str,
    user: CurrentUser,
    db: DbSession,
    clock: ClockDep,
    redis: RedisDep,
):
    """Claim a milestone reward for the current period.

    - Monthly milestones: current streak, once per calendar month
    - Lifetime milestones: total days, once ever
    """
    service = ClaimService(db, clock, redis=redis)
    return ClaimResponse(**await service.claim(user.id, milestone_id))


@router.get("/claims", response_model=ClaimHistoryResponse)
async def claim_history(
    user: CurrentUser,
    db: DbSession,
    clock: ClockDep,
    redis: RedisDep,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    service = ClaimService(db, clock, redis=redis)
    return ClaimHistoryResponse(**await service.claim_history(user.id, limit=limit, offset=offset))


@router.get("/permissions", response_model=list[PermissionItem])
async def list_permissions(user: CurrentUser, db: DbSession, clock: ClockDep, redis: RedisDep):
    service = ClaimService(db, clock, redis=redis)
    return [PermissionItem(**p) for p in await service.list_permissions(user.id)]


@router.get("/missed-days", response_model=MissedDaysResponse)
async def get_missed_days(user: CurrentUser, db: DbSession, clock: ClockDep, redis: RedisDep):
    """Missed days inside the purchase window, most recent first."""
    service = BackfillService(db, clock, redis=redis)
    return MissedDaysResponse(**await service.get_available(user.id))


@router.get("/missed-days/pricing", response_model=PricingResponse)
async def get_pricing(db: DbSession, clock: ClockDep):
    return PricingResponse(**BackfillService(db, clock).pricing())


@router.post("/missed-days/purchase", response_model=PurchaseResponse)
async def purchase_missed_days(
    request: PurchaseRequest,
    user: CurrentUser,
    db: DbSession,
    clock: ClockDep,
    redis: RedisDep,
):
    """Buy back missed days. Every date is validated before anything is written."""
    service = BackfillService(db, clock, redis=redis)
    return PurchaseResponse(**await service.purchase(user.id, request.dates))
