"""Business services."""

from streakledger.services.attendance import AttendanceService
from streakledger.services.backfill import BackfillService
from streakledger.services.claims import ClaimService
from streakledger.services.ledger import LedgerService
from streakledger.services.milestones import MilestoneCatalogService
from streakledger.services.streak_projector import (
    DayRecord,
    StreakSummary,
    project_summary,
)
from streakledger.services.summary import SummaryService

__all__ = [
    "AttendanceService",
    "BackfillService",
    "ClaimService",
    "DayRecord",
    "LedgerService",
    "MilestoneCatalogService",
    "StreakSummary",
    "SummaryService",
    "project_summary",
]
