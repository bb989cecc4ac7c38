"""Database connection and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm.exc import StaleDataError

from streakledger.config import get_settings
from streakledger.utils.errors import ConcurrentModificationError


@lru_cache
def get_engine() -> AsyncEngine:
    """Create the async engine on first use."""
    settings = get_settings()
    kwargs: dict = {"echo": settings.app_debug, "future": True}
    # SQLite pools reject sizing arguments
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=True,
        )
    return create_async_engine(settings.database_url, **kwargs)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the application engine."""
    return async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database session.

    Services commit their own units of work; anything left pending when the
    request fails is rolled back here.

    Usage:
        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Initialize database connection pool."""
    async with get_engine().begin() as conn:
        await conn.run_sync(lambda _: None)


async def close_db() -> None:
    """Close database connection pool."""
    await get_engine().dispose()


@asynccontextmanager
async def user_transaction(
    session: AsyncSession, user_id: str
) -> AsyncGenerator[AsyncSession, None]:
    """Run one per-user unit of work and commit it.

    A version-check failure on the user row means another writer won the
    race; it is rolled back and surfaced as ConcurrentModificationError.
    Any other exception rolls back and propagates unchanged.

    Usage:
        async with user_transaction(session, user_id):
            session.add(...)
    """
    try:
        yield session
        await session.commit()
    except StaleDataError as e:
        await session.rollback()
        raise ConcurrentModificationError(user_id) from e
    except Exception:
        await session.rollback()
        raise
