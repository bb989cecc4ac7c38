"""Sentry error tracking integration.

Business-rule failures (already claimed, insufficient balance, ...) are
expected and never reported. Ledger inconsistencies are reported at fatal
level through capture_ledger_error.
"""

import logging
import os
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from streakledger.utils.errors import LedgerError


def init_sentry(
    dsn: str | None = None,
    environment: str = "development",
    release: str | None = None,
    traces_sample_rate: float = 0.05,
) -> bool:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN. If None, uses SENTRY_DSN env var.
        environment: Environment name (development, staging, production)
        release: Release version string
        traces_sample_rate: Percentage of transactions to trace (0.0 to 1.0)

    Returns:
        True if Sentry was initialized, False otherwise
    """
    sentry_dsn = dsn or os.getenv("SENTRY_DSN")
    if not sentry_dsn:
        return False

    logging_integration = LoggingIntegration(
        level=logging.INFO,
        event_level=logging.ERROR,
    )

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=environment,
        release=release or os.getenv("APP_VERSION", "1.0.0"),
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            logging_integration,
        ],
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        before_send=_before_send,
        before_send_transaction=_before_send_transaction,
    )

    return True


def _before_send(event: dict, hint: dict) -> dict | None:
    """Drop recoverable business errors; they are part of normal traffic."""
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]
        if isinstance(exc_value, LedgerError) and exc_value.recoverable:
            return None

    return event


def _before_send_transaction(event: dict, hint: dict) -> dict | None:
    transaction_name = event.get("transaction", "")
    if any(path in transaction_name for path in ["/health", "/metrics"]):
        return None

    return event


def capture_ledger_error(
    error: Exception,
    user_id: str,
    operation: str,
    amount: int,
    extra: dict[str, Any] | None = None,
) -> str | None:
    """Capture a coin ledger error with high priority.

    Args:
        error: The exception that occurred
        user_id: User ID involved
        operation: What was being done (append, reconcile, ...)
        amount: Coin amount involved (0 when not applicable)
        extra: Additional context

    Returns:
        Sentry event ID or None
    """
    with sentry_sdk.push_scope() as scope:
        scope.set_level("fatal")
        scope.set_user({"id": user_id})
        scope.set_tag("ledger_operation", operation)
        scope.set_tag("ledger_error", "true")
        scope.set_extra("amount", amount)
        if extra:
            for key, value in extra.items():
                scope.set_extra(key, value)

        return sentry_sdk.capture_exception(error)
