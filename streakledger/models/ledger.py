"""Append-only coin ledger.

Every coin movement is recorded here with:
- signed amount and the balance before/after it
- a per-user sequence number (gapless, unique) so the ledger is totally ordered
- a business reference (event id, claim id, purchase batch id)
- an integrity hash for tamper detection
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from streakledger.models.base import Base, UUIDMixin


class LedgerReason(str, Enum):
    """Why coins moved."""

    DAILY_CHECKIN = "daily_checkin"
    MILESTONE_REWARD = "milestone_reward"
    BACKFILL_PURCHASE = "backfill_purchase"
    BACKFILL_REWARD = "backfill_reward"
    ADMIN_ADJUST = "admin_adjust"


class LedgerEntry(Base, UUIDMixin):
    """Ledger entry with full audit trail. Never updated or deleted."""

    __tablename__ = "ledger_entries"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # 1, 2, 3, ... per user
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Coin amount (+credit/-debit)",
    )
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reason: Mapped[LedgerReason] = mapped_column(
        SQLEnum(LedgerReason, name="ledger_reason"),
        nullable=False,
        index=True,
    )
    reference_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Business object this entry settles",
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    integrity_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 hash for tamper detection",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="uq_ledger_user_sequence"),
        # A business reference is settled at most once per reason
        UniqueConstraint("user_id", "reason", "reference_id", name="uq_ledger_user_reason_ref"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry user={self.user_id} #{self.sequence} "
            f"reason={self.reason.value} amount={self.amount:+}>"
        )
