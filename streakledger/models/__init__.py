"""Database models."""

from streakledger.models.attendance import AttendanceEvent, AttendanceStatus
from streakledger.models.base import Base, TimestampMixin, UUIDMixin
from streakledger.models.ledger import LedgerEntry, LedgerReason
from streakledger.models.milestone import (
    LIFETIME_PERIOD,
    ClaimRecord,
    MilestoneDefinition,
    MilestoneScope,
    PermissionGrant,
    RewardType,
    monthly_period_key,
)
from streakledger.models.user import User

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    # User
    "User",
    # Attendance
    "AttendanceEvent",
    "AttendanceStatus",
    # Milestones
    "MilestoneDefinition",
    "MilestoneScope",
    "RewardType",
    "ClaimRecord",
    "PermissionGrant",
    "LIFETIME_PERIOD",
    "monthly_period_key",
    # Ledger
    "LedgerEntry",
    "LedgerReason",
]
