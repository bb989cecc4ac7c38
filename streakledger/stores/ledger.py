"""Ledger store: append-only coin entries."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from streakledger.models.ledger import LedgerEntry, LedgerReason


class LedgerStore:
    """SQLAlchemy-backed ledger entries. Entries are never updated."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def last_entry(self, user_id: str) -> LedgerEntry | None:
        """Entry with the highest sequence for the user."""
        result = await self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def sum_amounts(self, user_id: str) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                LedgerEntry.user_id == user_id
            )
        )
        return int(result.scalar() or 0)

    async def find_by_reference(
        self, user_id: str, reason: LedgerReason, reference_id: str
    ) -> LedgerEntry | None:
        result = await self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .where(LedgerEntry.reason == reason)
            .where(LedgerEntry.reference_id == reference_id)
        )
        return result.scalar_one_or_none()

    async def list_entries(
        self,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        reason: LedgerReason | None = None,
    ) -> list[LedgerEntry]:
        """Entries newest first."""
        query = (
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.sequence.desc())
            .offset(offset)
            .limit(limit)
        )
        if reason:
            query = query.where(LedgerEntry.reason == reason)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    def add(self, entry: LedgerEntry) -> None:
        self.session.add(entry)
