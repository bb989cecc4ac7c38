"""Monitoring integrations."""

from streakledger.middleware.prometheus import setup_prometheus
from streakledger.middleware.sentry import capture_ledger_error, init_sentry

__all__ = [
    "capture_ledger_error",
    "init_sentry",
    "setup_prometheus",
]
