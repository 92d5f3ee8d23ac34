"""
Shared Redis connection. Only opened when FF_USE_REDIS is on.
"""

import logging

from .config import get_settings

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis():
    """Lazily create the shared async Redis client."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis

        settings = get_settings()
        _redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        logger.info("Redis client created")
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
