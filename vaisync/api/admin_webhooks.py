"""
Operator endpoints for the webhook pipeline.

- POST /api/v1/admin/webhook-deliveries/retry  - one retry pass (max 50 rows)
- GET  /api/v1/admin/webhook-deliveries        - delivery queue + per-status counts
- POST /api/v1/admin/webhook-deliveries        - push a partner notification now
- GET  /api/v1/admin/webhook-events            - inbound audit trail
- POST /api/v1/admin/webhook-events/{id}/replay - resend a stored event
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vaisync.database import get_db
from vaisync.models.outbound_delivery import DeliveryStatus
from vaisync.schemas.api_responses import (
    DeliveryQueueResponse,
    DeliverySummary,
    DispatchResponse,
    ReplayResponse,
    RetryRunResponse,
    WebhookEventListResponse,
    WebhookEventSummary,
)
from vaisync.schemas.webhook_payloads import DispatchRequest, ReplayRequest
from vaisync.services import delivery_tracker, event_store, outbound, replay
from vaisync.services.retry_scheduler import MAX_BATCH_SIZE, run_pass
from vaisync.utils.exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post("/webhook-deliveries/retry", response_model=RetryRunResponse)
async def trigger_retry_pass(db: AsyncSession = Depends(get_db)):
    """
    Run exactly one retry pass over due deliveries and report what happened.
    Never loops or waits for future retries.
    """
    logger.info("Manual webhook retry triggered")
    try:
        results = await run_pass(db, batch_size=MAX_BATCH_SIZE)
    except SQLAlchemyError as e:
        raise StorageError.from_exception("run retry pass", e) from e

    return RetryRunResponse(
        results=results,
        message=(
            f"Processed {results.processed} webhooks: {results.succeeded} succeeded, "
            f"{results.failed} failed, {results.exhausted} exhausted"
        ),
    )


@router.get("/webhook-deliveries", response_model=DeliveryQueueResponse)
async def list_webhook_deliveries(
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    if status is not None and status not in DeliveryStatus.ALL:
        raise ValidationError("Unknown delivery status", details=status)

    deliveries = await delivery_tracker.list_deliveries(db, status=status, limit=limit)
    counts = await delivery_tracker.queue_stats(db)
    return DeliveryQueueResponse(
        deliveries=[
            DeliverySummary(
                id=str(d.id),
                target_endpoint=d.target_endpoint,
                event_type=d.event_type,
                status=d.status,
                attempt_count=d.attempt_count,
                max_attempts=d.max_attempts,
                next_attempt_at=d.next_attempt_at,
                last_error=d.last_error,
                last_attempt_at=d.last_attempt_at,
                response_status=d.response_status,
                created_at=d.created_at,
                completed_at=d.completed_at,
            )
            for d in deliveries
        ],
        counts=counts,
    )


@router.post("/webhook-deliveries", response_model=DispatchResponse)
async def dispatch_webhook(
    payload: DispatchRequest,
    db: AsyncSession = Depends(get_db),
):
    """Deliver a partner notification now; a failed first attempt is queued for retry."""
    delivered, row = await outbound.send_webhook(
        db, payload.target_url, payload.payload, event_type=payload.event_type
    )
    if row is None:
        return DispatchResponse(delivered=delivered)

    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError.from_exception("queue failed delivery", e) from e
    return DispatchResponse(
        delivered=False, delivery_id=str(row.id), next_attempt_at=row.next_attempt_at
    )


@router.get("/webhook-events", response_model=WebhookEventListResponse)
async def list_webhook_events(
    processed: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    events, total = await event_store.list_events(db, processed=processed, limit=limit)
    return WebhookEventListResponse(
        events=[
            WebhookEventSummary(
                id=str(e.id),
                event_type=e.event_type,
                user_id=e.user_id,
                vai_number=e.vai_number,
                processed=e.processed,
                processed_at=e.processed_at,
                created_at=e.created_at,
                payload=e.payload,
            )
            for e in events
        ],
        total=total,
    )


@router.post("/webhook-events/{event_id}/replay", response_model=ReplayResponse)
async def replay_webhook_event(
    event_id: uuid.UUID,
    payload: ReplayRequest,
    db: AsyncSession = Depends(get_db),
):
    record = await replay.replay_event(
        db, event_id, payload.target_url, custom_payload=payload.custom_payload
    )
    return ReplayResponse(
        success=record.success,
        response_status=record.response_status,
        response_body=record.response_body,
        response_time_ms=record.response_time_ms or 0,
        error_message=record.error_message,
    )
