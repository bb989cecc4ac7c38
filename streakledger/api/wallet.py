"""Wallet API endpoints (coin balance and ledger history).

Endpoints:
- GET /wallet/balance - Get coin balance
- GET /wallet/transactions - Get ledger history
"""

from datetime import datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from streakledger.api.deps import ClockDep, CurrentUser, DbSession, RedisDep
from streakledger.config import get_settings
from streakledger.models.ledger import LedgerReason
from streakledger.services.ledger import LedgerService

router = APIRouter(prefix="/wallet", tags=["Wallet"])


# ============================================================
# Pydantic Schemas
# ============================================================


class BalanceResponse(BaseModel):
    """Balance response."""

    balance: int = Field(..., description="Coin balance")
    frozen: bool = Field(..., description="Balance mutation halted pending review")


class TransactionResponse(BaseModel):
    """Ledger entry response."""

    id: str
    sequence: int
    reason: LedgerReason
    amount: int
    balance_after: int
    reference_id: str | None
    description: str | None
    created_at: datetime


# ============================================================
# Endpoints
# ============================================================


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    user: CurrentUser,
    db: DbSession,
    clock: ClockDep,
    redis: RedisDep,
) -> BalanceResponse:
    """Get user's coin balance."""
    service = LedgerService(
        db, redis=redis, clock=clock, cache_ttl=get_settings().balance_cache_ttl
    )
    balance = await service.get_balance(user.id)
    return BalanceResponse(balance=balance, frozen=user.ledger_frozen)


@router.get("/transactions", response_model=list[TransactionResponse])
async def get_transactions(
    user: CurrentUser,
    db: DbSession,
    clock: ClockDep,
    reason: LedgerReason | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> list[TransactionResponse]:
    """Get user's ledger history, newest first."""
    service = LedgerService(db, clock=clock)

    entries = await service.get_entries(
        user.id,
        limit=limit,
        offset=offset,
        reason=reason,
    )

    return [
        TransactionResponse(
            id=e.id,
            sequence=e.sequence,
            reason=e.reason,
            amount=e.amount,
            balance_after=e.balance_after,
            reference_id=e.reference_id,
            description=e.description,
            created_at=e.created_at,
        )
        for e in entries
    ]
