# recofusion/db/redis.py
import logging

import redis.asyncio as redis

from recofusion.core.config import get_settings

logger = logging.getLogger(__name__)

redis_client: redis.Redis | None = None


async def connect():
    """
    Connect when REDIS_URL is set. Unreachable Redis disables the embedding
    cache instead of blocking startup.
    """
    global redis_client
    settings = get_settings()
    if not settings.REDIS_URL:
        logger.warning("No REDIS_URL configured, embedding cache disabled")
        redis_client = None
        return

    try:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        await client.ping()
        redis_client = client
        logger.info("Redis connection successful")
    except Exception as e:
        logger.warning(f"Failed to connect to Redis, embedding cache disabled: {e}")
        redis_client = None


async def disconnect():
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis disconnected")


def get_redis() -> redis.Redis | None:
    """Redis client, or None when not configured or unreachable."""
    return redis_client
