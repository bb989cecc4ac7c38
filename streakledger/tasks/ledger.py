"""Ledger maintenance tasks: reconciliation and pending reward settlement."""

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streakledger.clock import Clock
from streakledger.services.claims import ClaimService
from streakledger.services.ledger import LedgerService
from streakledger.tasks.celery_app import celery_app
from streakledger.tasks.runner import task_session_factory

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="streakledger.tasks.ledger.reconcile_ledgers_task",
    max_retries=3,
    default_retry_delay=300,
    autoretry_for=(Exception,),
    retry_backoff=True,
)
def reconcile_ledgers_task(self):
    """Compare every cached balance with its ledger; freeze on drift."""
    logger.info(f"Starting ledger reconciliation (attempt {self.request.retries + 1})")
    result = asyncio.run(_run_reconcile())
    if result["inconsistent"]:
        logger.error(f"Ledger reconciliation found frozen users: {result['inconsistent']}")
    else:
        logger.info(f"Ledger reconciliation complete: {result}")
    return result


@celery_app.task(
    bind=True,
    name="streakledger.tasks.ledger.settle_pending_rewards_task",
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True,
)
def settle_pending_rewards_task(self):
    """Grant rewards of claims left with reward_granted = false."""
    result = asyncio.run(_run_settle())
    if result["pending"]:
        logger.info(f"Pending reward settlement complete: {result}")
    return result


async def _run_reconcile() -> dict:
    async with task_session_factory() as session_factory:
        return await reconcile_ledgers(session_factory)


async def _run_settle() -> dict:
    async with task_session_factory() as session_factory:
        return await settle_pending_rewards(session_factory)


async def reconcile_ledgers(session_factory: async_sessionmaker[AsyncSession]) -> dict:
    async with session_factory() as session:
        result = await LedgerService(session, clock=Clock()).reconcile_all()

    return {
        "status": "success",
        **result,
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }


async def settle_pending_rewards(
    session_factory: async_sessionmaker[AsyncSession],
    clock: Clock | None = None,
) -> dict:
    async with session_factory() as session:
        result = await ClaimService(session, clock or Clock()).settle_pending_rewards()

    return {
        "status": "success",
        **result,
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }
