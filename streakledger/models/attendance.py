"""Attendance event model."""

import datetime as dt
from enum import Enum

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from streakledger.models.base import Base


class AttendanceStatus(str, Enum):
    """How the user was credited for the day."""

    ATTENDED = "attended"
    PURCHASED = "purchased"


class AttendanceEvent(Base):
    """Immutable per-user, per-day attendance record.

    A past day without a row is a missed day; missed days are never stored.
    """

    __tablename__ = "attendance_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Calendar day in the reference timezone
    date: Mapped[dt.date] = mapped_column(
        Date,
        nullable=False,
        comment="Attendance day (reference timezone)",
    )

    status: Mapped[AttendanceStatus] = mapped_column(
        SQLEnum(AttendanceStatus, name="attendance_status"),
        nullable=False,
        index=True,
    )

    # Coins credited for this day (daily check-in reward or purchase refund)
    coins_earned: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        # One event per user per day
        UniqueConstraint("user_id", "date", name="uq_attendance_user_date"),
        Index("ix_attendance_user_date", "user_id", "date"),
    )

    @property
    def is_purchased(self) -> bool:
        return self.status == AttendanceStatus.PURCHASED

    def __repr__(self) -> str:
        return f"<AttendanceEvent user={self.user_id} date={self.date} status={self.status.value}>"
