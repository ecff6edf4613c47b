"""
Outbound delivery tracker - durable retry state for partner webhooks.

A row is created on the first failed delivery and updated on every retry.
Backoff is a fixed table, not a formula:

    attempt 1 -> 30s, 2 -> 2m, 3 -> 8m, 4 -> 32m, 5 -> 2h

Once attempt_count reaches max_attempts the row is exhausted and never
scheduled again. Delivered and exhausted rows are kept for audit.

Functions here flush but do not commit (except claim(), whose lease must be
visible to concurrent passes before delivery starts); callers own the transaction.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vaisync.models.outbound_delivery import DeliveryStatus, OutboundDelivery
from vaisync.utils.exceptions import DeliveryError, StorageError
from vaisync.utils.logging import webhook_context

logger = logging.getLogger(__name__)

# Seconds to wait after the Nth failed attempt (index 0 = attempt 1)
BACKOFF_SCHEDULE_SECONDS = (30, 120, 480, 1920, 7200)
MAX_ATTEMPTS = 5
RESPONSE_BODY_LIMIT = 1000

# Rows a retry pass may pick up. in_flight only qualifies once its lease has expired.
_CLAIMABLE = (DeliveryStatus.PENDING, DeliveryStatus.RETRYING, DeliveryStatus.IN_FLIGHT)


def backoff_delay(attempt: int) -> timedelta:
    """Delay before the next attempt after ``attempt`` failures (clamped to the table)."""
    idx = min(max(attempt, 1), len(BACKOFF_SCHEDULE_SECONDS)) - 1
    return timedelta(seconds=BACKOFF_SCHEDULE_SECONDS[idx])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truncate(body: Optional[str]) -> Optional[str]:
    if body is None:
        return None
    return body[:RESPONSE_BODY_LIMIT]


async def record_failure(
    db: AsyncSession,
    target: str,
    payload: dict[str, Any],
    error: Union[str, Exception],
    delivery: Optional[OutboundDelivery] = None,
    event_type: Optional[str] = None,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
) -> OutboundDelivery:
    """
    Record a failed attempt.
    Creates the row on first failure, otherwise advances the existing one.
    """
    now = now or _utcnow()

    if delivery is None:
        delivery = OutboundDelivery(
            id=uuid.uuid4(),
            target_endpoint=target,
            payload=payload,
            event_type=event_type,
            status=DeliveryStatus.PENDING,
            attempt_count=0,
            max_attempts=max_attempts or MAX_ATTEMPTS,
            created_at=now,
        )
        db.add(delivery)

    delivery.attempt_count = min(delivery.attempt_count + 1, delivery.max_attempts)
    delivery.last_error = str(error)[:RESPONSE_BODY_LIMIT]
    delivery.last_attempt_at = now
    delivery.updated_at = now
    if isinstance(error, DeliveryError):
        delivery.response_status = error.response_status
        delivery.response_body = _truncate(error.response_body)
        delivery.response_time_ms = error.response_time_ms

    if delivery.attempt_count >= delivery.max_attempts:
        delivery.status = DeliveryStatus.EXHAUSTED
        delivery.next_attempt_at = None
        delivery.completed_at = now
        logger.error(
            "Delivery %s exhausted retries (%d/%d)",
            str(delivery.id)[:8], delivery.attempt_count, delivery.max_attempts,
            extra=webhook_context(delivery_id=delivery.id, target_endpoint=target),
        )
    else:
        delivery.status = DeliveryStatus.RETRYING
        delivery.next_attempt_at = now + backoff_delay(delivery.attempt_count)
        logger.info(
            "Delivery %s attempt %d/%d failed, next attempt at %s",
            str(delivery.id)[:8], delivery.attempt_count, delivery.max_attempts,
            delivery.next_attempt_at.isoformat(),
            extra=webhook_context(delivery_id=delivery.id, target_endpoint=target),
        )

    try:
        await db.flush()
    except SQLAlchemyError as e:
        raise StorageError.from_exception("record delivery failure", e) from e
    return delivery


async def record_success(
    db: AsyncSession,
    delivery: OutboundDelivery,
    response_status: Optional[int] = None,
    response_body: Optional[str] = None,
    response_time_ms: Optional[int] = None,
    now: Optional[datetime] = None,
) -> OutboundDelivery:
    """Mark delivered; terminal, never scheduled again."""
    now = now or _utcnow()
    delivery.status = DeliveryStatus.DELIVERED
    delivery.next_attempt_at = None
    delivery.last_error = None
    delivery.last_attempt_at = now
    delivery.completed_at = now
    delivery.updated_at = now
    delivery.response_status = response_status
    delivery.response_body = _truncate(response_body)
    delivery.response_time_ms = response_time_ms

    try:
        await db.flush()
    except SQLAlchemyError as e:
        raise StorageError.from_exception("record delivery success", e) from e

    logger.info(
        "Delivery %s delivered after %d failed attempt(s)",
        str(delivery.id)[:8], delivery.attempt_count,
        extra=webhook_context(delivery_id=delivery.id, target_endpoint=delivery.target_endpoint),
    )
    return delivery


async def due_for_retry(
    db: AsyncSession,
    limit: int,
    now: Optional[datetime] = None,
) -> list[OutboundDelivery]:
    """Up to ``limit`` due rows, oldest next_attempt_at first."""
    now = now or _utcnow()
    try:
        result = await db.execute(
            select(OutboundDelivery)
            .where(
                OutboundDelivery.status.in_(_CLAIMABLE),
                OutboundDelivery.next_attempt_at.is_not(None),
                OutboundDelivery.next_attempt_at <= now,
                OutboundDelivery.attempt_count < OutboundDelivery.max_attempts,
            )
            .order_by(OutboundDelivery.next_attempt_at.asc())
            .limit(limit)
        )
    except SQLAlchemyError as e:
        raise StorageError.from_exception("load due deliveries", e) from e
    return list(result.scalars().all())


async def claim(
    db: AsyncSession,
    delivery: OutboundDelivery,
    lease_seconds: int,
    now: Optional[datetime] = None,
) -> bool:
    """
    Take a lease on a due row with a conditional UPDATE.
    Returns False if another pass claimed it first. The lease is committed
    immediately; an expired lease makes the row due again.
    """
    now = now or _utcnow()
    result = await db.execute(
        update(OutboundDelivery)
        .where(
            OutboundDelivery.id == delivery.id,
            OutboundDelivery.status.in_(_CLAIMABLE),
            OutboundDelivery.next_attempt_at <= now,
        )
        .values(
            status=DeliveryStatus.IN_FLIGHT,
            next_attempt_at=now + timedelta(seconds=lease_seconds),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount != 1:
        logger.info(
            "Delivery %s already claimed by another pass, skipping",
            str(delivery.id)[:8], extra=webhook_context(delivery_id=delivery.id),
        )
        return False

    await db.refresh(delivery)
    return True


async def list_deliveries(
    db: AsyncSession,
    status: Optional[str] = None,
    limit: int = 100,
) -> list[OutboundDelivery]:
    query = select(OutboundDelivery)
    if status:
        query = query.where(OutboundDelivery.status == status)
    result = await db.execute(query.order_by(OutboundDelivery.created_at.desc()).limit(limit))
    return list(result.scalars().all())


async def queue_stats(db: AsyncSession) -> dict[str, int]:
    """Row count per status, every status present (zero when empty)."""
    result = await db.execute(
        select(OutboundDelivery.status, func.count()).group_by(OutboundDelivery.status)
    )
    counts = {status: 0 for status in DeliveryStatus.ALL}
    for status, count in result.all():
        counts[status] = count
    return counts
