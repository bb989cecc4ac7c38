"""User model.

Only the fields the attendance ledger consumes: the cached coin balance, the
cached streak summary, and the optimistic-concurrency version counter. Every
cached field here is rebuildable from attendance_events / ledger_entries.
"""

from datetime import date

from sqlalchemy import BigInteger, Boolean, Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from streakledger.models.base import Base, TimestampMixin, UUIDMixin


class User(Base, UUIDMixin, TimestampMixin):
    """User account (consumed from the surrounding application)."""

    __tablename__ = "users"

    nickname: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
    )

    # Cached balance - must always equal the sum of the user's ledger entries
    coin_balance: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
        comment="Cached coin balance (sum of ledger_entries)",
    )

    # Set when reconciliation finds drift; blocks every balance mutation
    ledger_frozen: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Balance mutation halted pending manual resolution",
    )

    # Cached streak summary (projection of attendance_events)
    total_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attendance_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    summary_computed_on: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
        comment="Reference day the cached summary was projected for",
    )

    # Per-user serialization of check-in / purchase / ledger writes
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<User {self.nickname}>"
