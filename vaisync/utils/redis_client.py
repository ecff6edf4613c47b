"""
Shared async Redis connection.
Used for alert cooldowns and the retry worker heartbeat; nothing in the
webhook pipeline's correctness depends on Redis being up.
"""
import logging

logger = logging.getLogger(__name__)

_redis_client = None


async def get_redis():
    """Get or create the Redis connection (lazy)."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from vaisync.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except Exception as e:
            logger.debug("Redis close failed: %s", str(e))
        _redis_client = None
