"""Prometheus metrics middleware and attendance metrics."""

from fastapi import FastAPI
from prometheus_client import Counter, Info
from prometheus_fastapi_instrumentator import Instrumentator, metrics

# =============================================================================
# Custom Metrics
# =============================================================================

APP_INFO = Info("streakledger_app", "Application information")

CHECKINS_TOTAL = Counter(
    "streakledger_checkins_total",
    "Daily check-ins recorded",
)

MILESTONE_CLAIMS_TOTAL = Counter(
    "streakledger_milestone_claims_total",
    "Milestone claim attempts by outcome",
    ["scope", "outcome"],  # outcome: claimed, already_claimed, insufficient
)

MISSED_DAYS_PURCHASED = Counter(
    "streakledger_missed_days_purchased_total",
    "Missed days bought back",
)

COINS_MOVED = Counter(
    "streakledger_coins_moved_total",
    "Coins credited or debited through the ledger",
    ["direction", "reason"],
)

LEDGER_INCONSISTENCIES = Counter(
    "streakledger_ledger_inconsistencies_total",
    "Users frozen after a cached balance / ledger mismatch",
)

CACHE_HITS = Counter(
    "streakledger_cache_hits_total",
    "Cache hit count",
    ["cache_type"],
)

CACHE_MISSES = Counter(
    "streakledger_cache_misses_total",
    "Cache miss count",
    ["cache_type"],
)


# =============================================================================
# Instrumentator Setup
# =============================================================================

def setup_prometheus(app: FastAPI, app_version: str = "1.0.0") -> Instrumentator:
    """Setup Prometheus metrics instrumentation.

    Args:
        app: FastAPI application instance
        app_version: Application version string

    Returns:
        Configured Instrumentator instance
    """
    APP_INFO.info({
        "version": app_version,
        "app_name": "streakledger",
    })

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/health", "/metrics"],
        inprogress_name="streakledger_http_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.add(
        metrics.default(
            metric_namespace="streakledger",
            metric_subsystem="http",
        )
    )

    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint="/metrics", include_in_schema=True, tags=["Monitoring"])

    return instrumentator


# =============================================================================
# Metric Helper Functions
# =============================================================================

def record_checkin() -> None:
    CHECKINS_TOTAL.inc()


def record_claim(scope: str, outcome: str) -> None:
    """Record a milestone claim attempt.

    Args:
        scope: Milestone scope (monthly, lifetime)
        outcome: claimed, already_claimed or insufficient
    """
    MILESTONE_CLAIMS_TOTAL.labels(scope=scope, outcome=outcome).inc()


def record_missed_days_purchased(count: int) -> None:
    MISSED_DAYS_PURCHASED.inc(count)


def record_coins(amount: int, reason: str) -> None:
    """Record a ledger movement.

    Args:
        amount: Signed coin amount
        reason: Ledger reason value
    """
    direction = "credit" if amount > 0 else "debit"
    COINS_MOVED.labels(direction=direction, reason=reason).inc(abs(amount))


def record_ledger_inconsistency() -> None:
    LEDGER_INCONSISTENCIES.inc()


def record_cache_access(cache_type: str, hit: bool) -> None:
    """Record cache access.

    Args:
        cache_type: Type of cache (balance)
        hit: True if cache hit, False if miss
    """
    if hit:
        CACHE_HITS.labels(cache_type=cache_type).inc()
    else:
        CACHE_MISSES.labels(cache_type=cache_type).inc()
