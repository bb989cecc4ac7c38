"""Redis client for the balance cache."""

from redis.asyncio import ConnectionPool, Redis

from streakledger.config import get_settings

# Global Redis connection pool and client instance
redis_pool: ConnectionPool | None = None
redis_client: Redis | None = None


async def init_redis() -> Redis:
    """Initialize Redis connection with a shared connection pool."""
    global redis_pool, redis_client

    settings = get_settings()
    redis_pool = ConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        retry_on_timeout=True,
        encoding="utf-8",
        decode_responses=True,
    )
    redis_client = Redis(connection_pool=redis_pool)

    await redis_client.ping()
    return redis_client


async def close_redis() -> None:
    """Close Redis connection and pool."""
    global redis_pool, redis_client
    if redis_client:
        await redis_client.close()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None


def get_redis_client() -> Redis | None:
    """Return the shared client, or None when Redis was never initialized.

    Callers treat None as "no cache" and go straight to the database.
    """
    return redis_client
