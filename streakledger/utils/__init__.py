"""Utility modules."""

from streakledger.utils.db import get_db
from streakledger.utils.redis_client import get_redis_client

__all__ = [
    "get_db",
    "get_redis_client",
]
