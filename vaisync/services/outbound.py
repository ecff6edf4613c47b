"""
Outbound partner webhook delivery over HTTP.

deliver() makes exactly one attempt and raises DeliveryError on any failure
(transport error, timeout, non-2xx), so callers have a single failure path to
feed into the delivery tracker.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from vaisync.config import get_settings
from vaisync.models.outbound_delivery import OutboundDelivery
from vaisync.services import delivery_tracker
from vaisync.utils.exceptions import DeliveryError
from vaisync.utils.logging import webhook_context
from vaisync.utils.webhook_signatures import (
    OUTBOUND_SIGNATURE_HEADER,
    serialize_payload,
    sign_outbound_payload,
)

logger = logging.getLogger(__name__)

EVENT_HEADER = "X-ChainPass-Event"
REPLAY_HEADER = "X-ChainPass-Replay"


@dataclass
class DeliveryResult:
    status_code: int
    body: str
    elapsed_ms: int


def build_headers(
    payload: Any,
    event_type: Optional[str] = None,
    extra_headers: Optional[dict[str, str]] = None,
    serialized: Optional[str] = None,
) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if event_type:
        headers[EVENT_HEADER] = event_type

    secret = get_settings().outbound_signing_secret
    if secret:
        headers[OUTBOUND_SIGNATURE_HEADER] = sign_outbound_payload(payload, secret, serialized=serialized)

    if extra_headers:
        headers.update(extra_headers)
    return headers


async def deliver(
    target: str,
    payload: Any,
    event_type: Optional[str] = None,
    timeout: Optional[float] = None,
    extra_headers: Optional[dict[str, str]] = None,
) -> DeliveryResult:
    """
    POST payload as JSON to target. A timeout counts as a failed delivery.
    The body is serialized once so X-Webhook-Signature covers the bytes on the wire.
    """
    if timeout is None:
        timeout = get_settings().outbound_timeout_seconds
    serialized = serialize_payload(payload)
    headers = build_headers(payload, event_type, extra_headers, serialized=serialized)

    start = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(target, content=serialized.encode("utf-8"), headers=headers)
    except httpx.TimeoutException as e:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        raise DeliveryError(
            f"Timed out after {timeout}s", response_time_ms=elapsed_ms
        ) from e
    except httpx.HTTPError as e:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        raise DeliveryError(
            f"{type(e).__name__}: {e}", response_time_ms=elapsed_ms
        ) from e

    elapsed_ms = int((time.monotonic() - start) * 1000)
    if not response.is_success:
        raise DeliveryError(
            f"HTTP {response.status_code}: {response.text[:200]}",
            response_status=response.status_code,
            response_body=response.text,
            response_time_ms=elapsed_ms,
        )

    return DeliveryResult(
        status_code=response.status_code,
        body=response.text,
        elapsed_ms=elapsed_ms,
    )


async def send_webhook(
    db: AsyncSession,
    target: str,
    payload: dict[str, Any],
    event_type: Optional[str] = None,
) -> tuple[bool, Optional[OutboundDelivery]]:
    """
    First delivery attempt for a partner notification.
    On failure the attempt is recorded so the retry scheduler picks it up.
    Returns (delivered, tracker_row_or_None). Caller commits.
    """
    try:
        await deliver(target, payload, event_type=event_type)
    except DeliveryError as e:
        logger.warning(
            "Initial delivery to %s failed: %s", target, e.message,
            extra=webhook_context(target_endpoint=target, event_type=event_type),
        )
        row = await delivery_tracker.record_failure(
            db,
            target=target,
            payload=payload,
            error=e,
            event_type=event_type,
            max_attempts=get_settings().outbound_max_attempts,
        )
        return False, row

    logger.info(
        "Delivered %s to %s", event_type or "webhook", target,
        extra=webhook_context(target_endpoint=target, event_type=event_type),
    )
    return True, None
