"""
Redis client initialization and connection management.

Redis carries the fire-and-forget notification fan-out. It never holds
state the parcel lifecycle depends on.
"""

import redis.asyncio as redis
from warehouse_backend.app.core.config import settings


# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.

    Resolved at call time so tests can swap the module-level client.
    """
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except Exception:
        return False


async def close_redis() -> None:
    """Release the connection pool on shutdown."""
    await redis_client.aclose()
