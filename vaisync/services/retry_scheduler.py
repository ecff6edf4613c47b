"""
Retry scheduler - one stateless pass over due outbound deliveries.

run_pass() is the only entry point: the manual trigger endpoint calls it once
per request, and the optional retry worker (or an external cron hitting the
endpoint) calls it on a timer. It never loops on its own.

Each row is handled in isolation: lease, deliver, record outcome, commit.
A failure on one row never stops the rest of the batch.
"""
import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vaisync.config import get_settings
from vaisync.models.outbound_delivery import DeliveryStatus, OutboundDelivery
from vaisync.schemas.api_responses import RetryResults
from vaisync.services import delivery_tracker, outbound
from vaisync.utils.alerting import AlertType, send_alert
from vaisync.utils.exceptions import DeliveryError, StorageError
from vaisync.utils.logging import webhook_context

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50

DeliverFn = Callable[..., Awaitable[Any]]

# Per-row outcomes
SUCCEEDED = "succeeded"
FAILED = "failed"
EXHAUSTED = "exhausted"


async def run_pass(
    db: AsyncSession,
    batch_size: int = MAX_BATCH_SIZE,
    deliver_fn: Optional[DeliverFn] = None,
    timeout: Optional[float] = None,
) -> RetryResults:
    """
    Retry up to ``batch_size`` (max 50) due deliveries, oldest-due first.

    Rows lost to a concurrent pass are skipped and not counted, so
    succeeded + failed == processed and exhausted is the subset of failed
    that became terminal here. Raises StorageError only if the due rows
    cannot be loaded at all.
    """
    settings = get_settings()
    batch_size = max(0, min(batch_size, MAX_BATCH_SIZE))
    deliver_fn = deliver_fn or outbound.deliver
    if timeout is None:
        timeout = settings.outbound_timeout_seconds

    results = RetryResults()
    if batch_size == 0:
        return results

    due = await delivery_tracker.due_for_retry(db, batch_size)
    logger.info("Found %d deliveries to retry", len(due))

    # A rollback expires every row in the session; reload each row by id
    due_ids = [delivery.id for delivery in due]
    for delivery_id in due_ids:
        outcome = await _retry_one(
            db, delivery_id, deliver_fn, settings.retry_lease_seconds, timeout
        )
        if outcome is None:
            continue
        results.processed += 1
        if outcome == SUCCEEDED:
            results.succeeded += 1
        else:
            results.failed += 1
            if outcome == EXHAUSTED:
                results.exhausted += 1

    logger.info(
        "Retry pass completed: %d processed, %d succeeded, %d failed, %d exhausted",
        results.processed, results.succeeded, results.failed, results.exhausted,
    )
    return results


async def _retry_one(
    db: AsyncSession,
    row_id: uuid.UUID,
    deliver_fn: DeliverFn,
    lease_seconds: int,
    timeout: float,
) -> Optional[str]:
    """Attempt one row. Returns its outcome, or None if it was not attempted."""
    delivery_id = str(row_id)
    try:
        delivery = await db.get(OutboundDelivery, row_id, populate_existing=True)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Could not load delivery %s: %s", delivery_id[:8], str(e))
        return None
    if delivery is None:
        return None

    log_extra = webhook_context(delivery_id=delivery_id, target_endpoint=delivery.target_endpoint)

    try:
        if not await delivery_tracker.claim(db, delivery, lease_seconds):
            return None
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Could not lease delivery %s: %s", delivery_id[:8], str(e), extra=log_extra)
        return None

    logger.info(
        "Retrying delivery %s (attempt %d/%d)",
        delivery_id[:8], delivery.attempt_count + 1, delivery.max_attempts,
        extra=log_extra,
    )

    error: Exception
    try:
        result = await asyncio.wait_for(
            deliver_fn(
                delivery.target_endpoint,
                delivery.payload,
                event_type=delivery.event_type,
                timeout=timeout,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        error = DeliveryError(f"Timed out after {timeout}s")
    except DeliveryError as e:
        error = e
    except Exception as e:
        # Unexpected errors are this row's failure, not the batch's
        logger.error(
            "Unexpected error delivering %s: %s", delivery_id[:8], str(e),
            exc_info=True, extra=log_extra,
        )
        error = e
    else:
        try:
            await delivery_tracker.record_success(
                db,
                delivery,
                response_status=getattr(result, "status_code", None),
                response_body=getattr(result, "body", None),
                response_time_ms=getattr(result, "elapsed_ms", None),
            )
            await db.commit()
        except (StorageError, SQLAlchemyError) as e:
            # Delivery went out; the row stays leased and resurfaces after the lease expires
            await db.rollback()
            logger.error(
                "Delivered %s but failed to record success: %s", delivery_id[:8], str(e),
                extra=log_extra,
            )
        return SUCCEEDED

    logger.warning(
        "Delivery %s failed: %s", delivery_id[:8], str(error), extra=log_extra,
    )
    try:
        await delivery_tracker.record_failure(
            db,
            target=delivery.target_endpoint,
            payload=delivery.payload,
            error=error,
            delivery=delivery,
        )
        await db.commit()
    except (StorageError, SQLAlchemyError) as e:
        await db.rollback()
        logger.error(
            "Failed to record failure for delivery %s: %s", delivery_id[:8], str(e),
            extra=log_extra,
        )
        # Still leased: resurfaces after the lease expires and is counted again by
        # that pass, which is also where an exhausting attempt raises its alert
        return FAILED

    if delivery.status == DeliveryStatus.EXHAUSTED:
        await send_alert(
            AlertType.DELIVERY_EXHAUSTED,
            f"Webhook delivery {delivery_id} to {delivery.target_endpoint} failed "
            f"after {delivery.max_attempts} attempts and requires manual intervention",
            extra={"delivery_id": delivery_id, "last_error": delivery.last_error},
            dedup_key=delivery_id,
        )
        return EXHAUSTED
    return FAILED
