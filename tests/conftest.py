"""Shared test fixtures.

Every test gets its own SQLite database file, so services can be exercised
against real constraints (unique claims, gapless ledger sequence, version
column) without a PostgreSQL server.
"""

import os

# Settings are read from the environment on first use
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./streakledger-test.db")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("INTERNAL_API_KEY", "sl-internal-9f3c2b7e4d1a8k6q")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ENABLE_METRICS", "true")

from collections.abc import AsyncGenerator, Iterable
from datetime import date, datetime, time, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from streakledger.clock import FixedClock
from streakledger.config import Settings
from streakledger.models import AttendanceEvent, AttendanceStatus, Base, User
from streakledger.services.ledger import LedgerService

TEST_API_KEY = os.environ["INTERNAL_API_KEY"]


def get_test_settings() -> Settings:
    """Settings with the default economy (cost 50, refund 10, daily reward 10)."""
    return Settings(
        app_env="test",
        app_debug=False,
        database_url=os.environ["DATABASE_URL"],
        redis_url=os.environ["REDIS_URL"],
        internal_api_key=TEST_API_KEY,
        missed_day_cost=50,
        purchased_day_reward=10,
        daily_checkin_reward=10,
        backfill_window_days=30,
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Fresh SQLite database file with all tables for each test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'streakledger.db'}",
        poolclass=NullPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the application's."""
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Database session. Services commit their own units of work."""
    async with session_factory() as session:
        yield session


# =============================================================================
# Domain Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return get_test_settings()


@pytest.fixture
def clock() -> FixedClock:
    """Reference clock frozen at 2024-01-10 (UTC+7)."""
    return FixedClock(date(2024, 1, 10))


@pytest.fixture
def make_user(db: AsyncSession):
    """Factory creating committed users."""

    async def _make_user(nickname: str | None = None) -> User:
        user = User(nickname=nickname or f"user-{uuid4().hex[:8]}")
        db.add(user)
        await db.commit()
        return user

    return _make_user


@pytest_asyncio.fixture(scope="function")
async def user(make_user) -> User:
    return await make_user("alice")


@pytest.fixture
def add_events(db: AsyncSession):
    """Factory inserting attendance events directly (no ledger movement)."""

    async def _add_events(
        user_id: str,
        days: Iterable[date],
        status: AttendanceStatus = AttendanceStatus.ATTENDED,
    ) -> None:
        for day in days:
            db.add(
                AttendanceEvent(
                    user_id=user_id,
                    date=day,
                    status=status,
                    coins_earned=0,
                    created_at=datetime.combine(day, time(12), tzinfo=timezone.utc),
                )
            )
        await db.commit()

    return _add_events


@pytest.fixture
def fund(db: AsyncSession, clock: FixedClock):
    """Factory crediting coins through an operator adjustment."""

    async def _fund(user_id: str, amount: int) -> int:
        entry = await LedgerService(db, clock=clock).adjust(
            user_id, amount, reference_id=f"seed-{uuid4().hex[:12]}"
        )
        return entry.balance_after

    return _fund

