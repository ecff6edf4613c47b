"""
Event store - durable record of inbound Vairify webhooks and the status
updates derived from them.

Processing is three committed steps, each gated on the previous one:

    ingest -> derive_status -> mark_processed

The event row is committed on its own before anything is derived from it, so a
later failure leaves it in place with processed=False for manual
reconciliation. Nothing here retries; storage errors go straight to the caller.
Replays are appended as new events, never merged into existing rows.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vaisync.models.status_update import StatusUpdate
from vaisync.models.webhook_event import InboundWebhookEvent
from vaisync.schemas.webhook_payloads import VairifyWebhookPayload
from vaisync.utils.alerting import AlertType, send_alert
from vaisync.utils.exceptions import StorageError
from vaisync.utils.logging import get_correlation_id, webhook_context

logger = logging.getLogger(__name__)


async def _commit_or_raise(db: AsyncSession, step: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Storage failure during %s: %s", step, str(e), exc_info=True)
        raise StorageError.from_exception(step, e) from e


async def ingest(
    db: AsyncSession,
    event_type: str,
    user_id: str,
    vai_number: str,
    payload: dict[str, Any],
    signature: Optional[str] = None,
) -> uuid.UUID:
    """Insert one unprocessed event row. Raises StorageError if the insert fails."""
    event = InboundWebhookEvent(
        id=uuid.uuid4(),
        event_type=event_type,
        user_id=user_id,
        vai_number=vai_number,
        payload=payload,
        signature=signature or None,
        processed=False,
        correlation_id=get_correlation_id(),
    )
    db.add(event)
    await _commit_or_raise(db, "store webhook event")

    logger.info(
        "Webhook event stored: %s", event.event_type,
        extra=webhook_context(event_id=event.id, vai_number=vai_number),
    )
    return event.id


async def derive_status(
    db: AsyncSession,
    event_id: uuid.UUID,
    vai_number: str,
    status_type: str,
    status_data: Optional[dict[str, Any]],
) -> uuid.UUID:
    """
    Insert the status row for an ingested event.
    On failure nothing is written and the event stays unprocessed.
    """
    update = StatusUpdate(
        id=uuid.uuid4(),
        vai_number=vai_number,
        status_type=status_type,
        status_data=status_data,
        webhook_event_id=event_id,
    )
    db.add(update)
    await _commit_or_raise(db, "create status update")
    return update.id


async def mark_processed(db: AsyncSession, event_id: uuid.UUID) -> None:
    """Flip processed false -> true. Only call after derive_status succeeded."""
    try:
        event = await db.get(InboundWebhookEvent, event_id)
    except SQLAlchemyError as e:
        raise StorageError.from_exception("load webhook event", e) from e
    if event is None:
        raise StorageError("Failed to mark webhook processed", details=f"event {event_id} not found")
    if event.processed:
        return

    event.processed = True
    event.processed_at = datetime.now(timezone.utc)
    await _commit_or_raise(db, "mark webhook processed")


async def process_inbound_event(
    db: AsyncSession,
    webhook: VairifyWebhookPayload,
    signature: Optional[str] = None,
    raw_payload: Optional[dict[str, Any]] = None,
) -> uuid.UUID:
    """
    Run the full inbound sequence for one validated webhook.
    ``raw_payload`` is the document exactly as received; defaults to the parsed model.
    Any failure aborts the remaining steps and propagates as StorageError.
    """
    event_id = await ingest(
        db,
        event_type=webhook.event_type,
        user_id=webhook.user_id,
        vai_number=webhook.vai_number,
        payload=raw_payload if raw_payload is not None else webhook.model_dump(mode="json"),
        signature=signature,
    )

    try:
        await derive_status(
            db,
            event_id=event_id,
            vai_number=webhook.vai_number,
            status_type=webhook.event_type,
            status_data=webhook.data.model_dump(mode="json", exclude_unset=True),
        )
    except StorageError:
        await send_alert(
            AlertType.STATUS_DERIVATION_FAILED,
            f"Event {str(event_id)[:8]} stored but status update failed; left unprocessed",
            extra={"event_id": str(event_id), "vai_number": webhook.vai_number},
        )
        raise

    await mark_processed(db, event_id)
    logger.info(
        "Webhook processed successfully",
        extra=webhook_context(event_id=event_id, event_type=webhook.event_type),
    )
    return event_id


async def get_event(db: AsyncSession, event_id: uuid.UUID) -> Optional[InboundWebhookEvent]:
    return await db.get(InboundWebhookEvent, event_id)


async def get_status_for_event(db: AsyncSession, event_id: uuid.UUID) -> Optional[StatusUpdate]:
    result = await db.execute(
        select(StatusUpdate).where(StatusUpdate.webhook_event_id == event_id)
    )
    return result.scalar_one_or_none()


async def list_events(
    db: AsyncSession,
    processed: Optional[bool] = None,
    limit: int = 100,
) -> tuple[list[InboundWebhookEvent], int]:
    """Newest-first audit listing. Returns (events, total matching)."""
    query = select(InboundWebhookEvent)
    count_query = select(func.count()).select_from(InboundWebhookEvent)
    if processed is not None:
        query = query.where(InboundWebhookEvent.processed == processed)
        count_query = count_query.where(InboundWebhookEvent.processed == processed)

    result = await db.execute(
        query.order_by(InboundWebhookEvent.created_at.desc()).limit(limit)
    )
    total = (await db.execute(count_query)).scalar_one()
    return list(result.scalars().all()), total
