"""
Health endpoints for load balancers and the cron that drives retry passes.

- GET /health       - liveness, 200 whenever the process serves requests
- GET /health/ready - database, Redis, retry queue depth and worker heartbeat
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from vaisync.config import get_settings
from vaisync.database import get_db
from vaisync.services.delivery_tracker import queue_stats
from vaisync.workers.retry_worker import HEARTBEAT_KEY

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _database_ok(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return False


async def _redis_client():
    """Connected Redis client, or None when unreachable."""
    try:
        from vaisync.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()
        return redis
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return None


async def _last_heartbeat(redis) -> Optional[str]:
    try:
        value = await redis.get(HEARTBEAT_KEY)
    except Exception as e:
        logger.warning("Retry worker heartbeat read failed: %s", str(e))
        return None
    if isinstance(value, bytes):
        value = value.decode()
    return value if isinstance(value, str) else None


@router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": _now_iso()}


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """
    Database and Redis connectivity plus delivery queue counts.

    Redis only backs alert cooldowns and the worker heartbeat, so an outage
    reports "degraded" rather than failing the probe. The retry worker is only
    checked when RETRY_WORKER_ENABLED is set; its heartbeat key expires after
    five minutes without a pass.
    """
    database_ok = await _database_ok(db)
    redis = await _redis_client()
    checks = {"database": database_ok, "redis": redis is not None}

    delivery_queue = None
    if database_ok:
        try:
            delivery_queue = await queue_stats(db)
        except Exception as e:
            logger.warning("Delivery queue stats failed: %s", str(e))

    worker = {"enabled": get_settings().retry_worker_enabled, "last_heartbeat": None}
    if worker["enabled"]:
        if redis is not None:
            worker["last_heartbeat"] = await _last_heartbeat(redis)
        checks["retry_worker"] = worker["last_heartbeat"] is not None

    return {
        "status": "ready" if all(checks.values()) else "degraded",
        "checks": checks,
        "delivery_queue": delivery_queue,
        "retry_worker": worker,
        "timestamp": _now_iso(),
    }
