"""
Operator replay of stored inbound events to an arbitrary endpoint.
One attempt, no tracking in the retry queue; every replay is logged to
webhook_replay_history whether it succeeded or not.
"""
import logging
import uuid
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vaisync.models.replay_record import ReplayRecord
from vaisync.services import event_store, outbound
from vaisync.utils.exceptions import DeliveryError, NotFoundError
from vaisync.utils.logging import webhook_context

logger = logging.getLogger(__name__)


async def replay_event(
    db: AsyncSession,
    event_id: uuid.UUID,
    target_url: str,
    custom_payload: Optional[dict[str, Any]] = None,
) -> ReplayRecord:
    event = await event_store.get_event(db, event_id)
    if event is None:
        raise NotFoundError("Webhook event not found", details=str(event_id))

    payload = custom_payload or event.payload
    logger.info(
        "Replaying webhook %s to %s", str(event_id)[:8], target_url,
        extra=webhook_context(event_id=event_id, target_endpoint=target_url),
    )

    record = ReplayRecord(
        id=uuid.uuid4(),
        original_webhook_id=event.id,
        target_url=target_url,
        payload=payload,
    )
    try:
        result = await outbound.deliver(
            target_url,
            payload,
            event_type=event.event_type,
            extra_headers={outbound.REPLAY_HEADER: "true"},
        )
    except DeliveryError as e:
        record.success = False
        record.error_message = e.message
        record.response_status = e.response_status
        record.response_body = e.response_body
        record.response_time_ms = e.response_time_ms or 0
    else:
        record.success = True
        record.response_status = result.status_code
        record.response_body = result.body
        record.response_time_ms = result.elapsed_ms

    db.add(record)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        # Replay already sent; a failed history write does not fail the request
        await db.rollback()
        logger.error("Error logging replay history: %s", str(e), extra=webhook_context(event_id=event_id))

    return record
