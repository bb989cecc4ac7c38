"""Milestone catalog and claim records."""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from streakledger.models.base import Base, TimestampMixin, UUIDMixin

# Persisted period key of lifetime claims. SQL unique constraints treat NULLs
# as distinct, so "no period" is stored as a sentinel.
LIFETIME_PERIOD = "lifetime"


class MilestoneScope(str, Enum):
    """How progress toward a milestone is measured."""

    MONTHLY = "monthly"  # current_streak, re-claimable every calendar month
    LIFETIME = "lifetime"  # total_days, claimable once ever


class RewardType(str, Enum):
    """What a milestone grants."""

    COIN = "coin"
    PERMISSION = "permission"


def monthly_period_key(day: date) -> str:
    """Period key of the calendar month containing ``day`` (YYYY-MM)."""
    return f"{day.year:04d}-{day.month:02d}"


class MilestoneDefinition(Base, UUIDMixin, TimestampMixin):
    """Admin-managed reward threshold."""

    __tablename__ = "milestone_definitions"

    scope: Mapped[MilestoneScope] = mapped_column(
        SQLEnum(MilestoneScope, name="milestone_scope"),
        nullable=False,
        index=True,
    )
    required_days: Mapped[int] = mapped_column(Integer, nullable=False)

    reward_type: Mapped[RewardType] = mapped_column(
        SQLEnum(RewardType, name="reward_type"),
        nullable=False,
    )
    reward_value: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
        comment="Coins granted (coin rewards)",
    )
    permission_code: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Permission granted (permission rewards)",
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
    )

    __table_args__ = (
        # No two active definitions share (scope, required_days)
        Index(
            "uq_milestone_active_scope_days",
            "scope",
            "required_days",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def __repr__(self) -> str:
        return f"<MilestoneDefinition {self.scope.value}:{self.required_days} {self.reward_type.value}>"


class ClaimRecord(Base, UUIDMixin):
    """One reward issuance tying a user, a milestone and a period together.

    The (user_id, milestone_id, period_key) unique constraint is the only
    thing preventing double claims; no application lock is taken.
    """

    __tablename__ = "claim_records"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    milestone_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("milestone_definitions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # "YYYY-MM" for monthly milestones, LIFETIME_PERIOD for lifetime ones
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)

    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    streak_snapshot: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="current_streak (monthly) or total_days (lifetime) at claim time",
    )

    # Reward copied from the definition at claim time
    reward_type: Mapped[RewardType] = mapped_column(
        SQLEnum(RewardType, name="reward_type"),
        nullable=False,
    )
    reward_value: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    permission_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    reward_granted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True,
    )
    reward_granted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "milestone_id", "period_key", name="uq_claim_user_milestone_period"
        ),
        Index("ix_claim_user_claimed_at", "user_id", "claimed_at"),
    )

    @property
    def period(self) -> tuple[int, int] | None:
        """Domain period key: (month, year) for monthly claims, None for lifetime."""
        if self.period_key == LIFETIME_PERIOD:
            return None
        year, month = self.period_key.split("-")
        return int(month), int(year)

    def __repr__(self) -> str:
        return f"<ClaimRecord user={self.user_id} milestone={self.milestone_id} period={self.period_key}>"


class PermissionGrant(Base, UUIDMixin):
    """Permission granted to a user by a permission-type milestone."""

    __tablename__ = "permission_grants"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission_code: Mapped[str] = mapped_column(String(100), nullable=False)
    source_claim_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("claim_records.id", ondelete="SET NULL"),
        nullable=True,
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "permission_code", name="uq_permission_user_code"),
    )

    def __repr__(self) -> str:
        return f"<PermissionGrant user={self.user_id} permission={self.permission_code}>"
