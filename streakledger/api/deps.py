"""API dependencies: caller identity, clock, cache and admin key."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from streakledger.clock import Clock
from streakledger.config import get_settings
from streakledger.logging_config import bind_context
from streakledger.models.user import User
from streakledger.utils.db import get_db
from streakledger.utils.redis_client import get_redis_client

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_clock() -> Clock:
    """Reference clock; overridden in tests."""
    return Clock()


def get_redis() -> Redis | None:
    return get_redis_client()


ClockDep = Annotated[Clock, Depends(get_clock)]
RedisDep = Annotated[Redis | None, Depends(get_redis)]


async def get_current_user(
    db: DbSession,
    x_user_id: Annotated[str | None, Header()] = None,
) -> User:
    """Resolve the caller from the X-User-Id header.

    Authentication happens upstream; this only checks the user exists.

    Raises:
        HTTPException: header missing (401) or unknown user (404)
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_REQUIRED",
                    "message": "X-User-Id header required",
                    "details": {},
                }
            },
        )

    user = await db.get(User, x_user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": {
                    "code": "NOT_FOUND",
                    "message": f"User not found: {x_user_id}",
                    "details": {"entity": "User", "id": x_user_id},
                }
            },
        )

    bind_context(user_id=user.id)
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def verify_api_key(x_api_key: Annotated[str | None, Header()] = None) -> bool:
    """Verify the API key of internal admin callers."""
    if x_api_key != get_settings().internal_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "INVALID_API_KEY",
                    "message": "Invalid API key",
                    "details": {},
                }
            },
        )
    return True
