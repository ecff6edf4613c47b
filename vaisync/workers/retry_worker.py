"""
Retry worker - timer-driven runner for the retry scheduler.
Disabled by default (an external cron hitting the manual trigger is the
usual clock). When enabled, runs one pass every RETRY_WORKER_INTERVAL_SECONDS.
"""
import asyncio
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

HEARTBEAT_KEY = "vaisync:worker_health:retry_worker"


async def _heartbeat():
    """Store heartbeat timestamp in Redis."""
    try:
        from vaisync.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.set(HEARTBEAT_KEY, datetime.now(timezone.utc).isoformat(), ex=300)
    except Exception as e:
        logger.debug("Retry worker heartbeat failed: %s", str(e))


async def run_retry_worker():
    """Main retry worker loop. Runs until cancelled."""
    from vaisync.config import get_settings
    interval = get_settings().retry_worker_interval_seconds
    logger.info("Retry worker started (interval=%ds)", interval)

    while True:
        try:
            results = await run_once()
            if results.processed > 0:
                logger.info(
                    "Retry worker processed %d deliveries (%d succeeded, %d exhausted)",
                    results.processed, results.succeeded, results.exhausted,
                )
        except Exception as e:
            logger.error("Retry worker error: %s", str(e), exc_info=True)

        await _heartbeat()
        await asyncio.sleep(interval)


async def run_once():
    """One scheduler pass in its own session."""
    from vaisync.config import get_settings
    from vaisync.database import async_session_factory
    from vaisync.services.retry_scheduler import run_pass

    async with async_session_factory() as db:
        return await run_pass(db, batch_size=get_settings().retry_batch_size)
