"""Custom exception classes for attendance and ledger errors.

Every business-rule failure carries a stable error code so callers can
branch on it (e.g. treat ALREADY_CLAIMED as a no-op success) instead of
parsing messages.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # Conflict subtypes
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"

    # Business rule errors
    INSUFFICIENT_PROGRESS = "INSUFFICIENT_PROGRESS"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    FUTURE_DATE_REJECTED = "FUTURE_DATE_REJECTED"
    WINDOW_EXCEEDED = "WINDOW_EXCEEDED"

    # Fatal
    INTERNAL_INCONSISTENCY = "INTERNAL_INCONSISTENCY"


class LedgerError(Exception):
    """Base exception for attendance/ledger errors.

    Attributes:
        code: Error code for programmatic handling
        message: User-friendly error message
        details: Additional error details
        recoverable: Whether retrying or correcting input can succeed
    """

    status_code = 400

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ):
        self.code = code if isinstance(code, str) else code.value
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ValidationError(LedgerError):
    """Raised when input is malformed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            details=details,
        )


class NotFoundError(LedgerError):
    """Raised when a referenced entity does not exist (or is inactive)."""

    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"{entity} not found: {entity_id}",
            details={"entity": entity, "id": entity_id},
        )


class ConflictError(LedgerError):
    """Raised when a uniqueness rule rejects a write."""

    status_code = 409

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode | str = ErrorCode.CONFLICT,
    ):
        super().__init__(code=code, message=message, details=details)


class AlreadyCheckedInError(ConflictError):
    """Raised when an attendance event already exists for the day."""

    def __init__(self, day: date):
        super().__init__(
            message=f"Attendance already recorded for {day.isoformat()}",
            details={"date": day.isoformat()},
            code=ErrorCode.ALREADY_CHECKED_IN,
        )


class AlreadyClaimedError(ConflictError):
    """Raised when the claim record for (user, milestone, period) exists."""

    def __init__(
        self,
        milestone_id: str,
        period_key: str,
        claim_id: str | None = None,
    ):
        super().__init__(
            message="Milestone reward already claimed for this period",
            details={
                "milestoneId": milestone_id,
                "periodKey": period_key,
                "claimId": claim_id,
            },
            code=ErrorCode.ALREADY_CLAIMED,
        )


class ConcurrentModificationError(ConflictError):
    """Raised when another writer updated the same user first."""

    def __init__(self, user_id: str):
        super().__init__(
            message="User state changed concurrently, retry the operation",
            details={"userId": user_id},
            code=ErrorCode.CONCURRENT_MODIFICATION,
        )


class InsufficientProgressError(LedgerError):
    """Raised when a milestone claim is attempted before reaching it."""

    def __init__(self, required: int, current: int, scope: str):
        super().__init__(
            code=ErrorCode.INSUFFICIENT_PROGRESS,
            message=f"Milestone requires {required} days ({scope}), current: {current}",
            details={"required": required, "current": current, "scope": scope},
        )


class InsufficientBalanceError(LedgerError):
    """Raised when a debit would drive the balance negative."""

    def __init__(self, balance: int, required: int):
        super().__init__(
            code=ErrorCode.INSUFFICIENT_BALANCE,
            message=f"Insufficient balance: {balance}, required: {required}",
            details={"balance": balance, "required": required},
        )


class FutureDateRejectedError(LedgerError):
    """Raised when a date lies on the wrong side of today."""

    def __init__(self, day: date, today: date):
        super().__init__(
            code=ErrorCode.FUTURE_DATE_REJECTED,
            message=f"Date {day.isoformat()} is not allowed relative to {today.isoformat()}",
            details={"date": day.isoformat(), "today": today.isoformat()},
        )


class WindowExceededError(LedgerError):
    """Raised when a backfill date is older than the purchase window."""

    def __init__(self, day: date, oldest: date, window_days: int):
        super().__init__(
            code=ErrorCode.WINDOW_EXCEEDED,
            message=f"Date {day.isoformat()} is older than the {window_days}-day window",
            details={
                "date": day.isoformat(),
                "oldestAllowed": oldest.isoformat(),
                "windowDays": window_days,
            },
        )


class InternalInconsistencyError(LedgerError):
    """Raised when the cached balance disagrees with the ledger.

    Never auto-corrected: the user's balance is frozen until an operator
    resolves it.
    """

    status_code = 500

    def __init__(self, user_id: str, cached_balance: int, ledger_balance: int | None):
        super().__init__(
            code=ErrorCode.INTERNAL_INCONSISTENCY,
            message=f"Ledger/balance mismatch for user {user_id}",
            details={
                "userId": user_id,
                "cachedBalance": cached_balance,
                "ledgerBalance": ledger_balance,
            },
            recoverable=False,
        )
