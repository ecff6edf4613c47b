"""
Inbound webhook endpoints.

Vairify status callbacks, in order:
1. Signature check (x-vairify-signature, sha256 over body + secret)
2. Payload validation
3. Event store: ingest -> derive status -> mark processed

Errors render as {"error": ..., "details": ...} via the handlers in main.py:
401 bad signature, 400 malformed payload, 500 storage failure.
"""
import json
import logging
import time

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from vaisync.config import get_settings
from vaisync.database import get_db
from vaisync.schemas.api_responses import SignatureValidationResponse, WebhookAcceptedResponse
from vaisync.schemas.webhook_payloads import SignatureValidationRequest, VairifyWebhookPayload
from vaisync.services.event_store import process_inbound_event
from vaisync.utils.alerting import AlertType, send_alert
from vaisync.utils.exceptions import AuthenticationError, ValidationError
from vaisync.utils.logging import webhook_context
from vaisync.utils.webhook_signatures import (
    VAIRIFY_SIGNATURE_HEADER,
    check_vairify_signature,
    compute_payload_hash,
    parse_signature_header,
    validate_webhook_signature,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, x-vairify-signature"
    ),
}


async def _validate_signature(request: Request, body: bytes, signature: str | None) -> None:
    """Apply the signature policy; alert and re-raise on mismatch."""
    try:
        check_vairify_signature(body, signature, get_settings().vairify_webhook_secret)
    except AuthenticationError:
        client_ip = request.client.host if request.client else "unknown"
        logger.warning("Invalid webhook signature: ip=%s", client_ip)
        await send_alert(
            AlertType.WEBHOOK_SIGNATURE_INVALID,
            f"Rejected Vairify webhook with invalid signature from {client_ip}",
            severity="warning",
            extra={"payload_hash": compute_payload_hash(body)},
        )
        raise


def _parse_payload(body: bytes) -> tuple[VairifyWebhookPayload, dict]:
    try:
        raw = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Malformed JSON payload", details=str(e)) from e
    if not isinstance(raw, dict):
        raise ValidationError("Malformed JSON payload", details="expected a JSON object")

    try:
        webhook = VairifyWebhookPayload.model_validate(raw)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError("Invalid webhook payload", details=f"invalid fields: {fields}") from e
    return webhook, raw


@router.options("/vairify")
async def vairify_webhook_preflight():
    """CORS preflight: empty body, permissive headers."""
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post("/vairify", response_model=WebhookAcceptedResponse)
async def vairify_webhook(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Receive a Vairify status callback and derive the V.A.I. status update from it."""
    body = await request.body()
    signature = request.headers.get(VAIRIFY_SIGNATURE_HEADER)

    await _validate_signature(request, body, signature)
    webhook, raw = _parse_payload(body)

    logger.info(
        "Received webhook %s", webhook.event_type,
        extra=webhook_context(event_type=webhook.event_type, vai_number=webhook.vai_number),
    )

    event_id = await process_inbound_event(db, webhook, signature=signature, raw_payload=raw)

    response.headers.update(CORS_HEADERS)
    return WebhookAcceptedResponse(event_id=str(event_id))


@router.post("/validate-signature", response_model=SignatureValidationResponse)
async def validate_signature(payload: SignatureValidationRequest):
    """
    Partner tooling: validate an X-Webhook-Signature header (t=<ts>,v1=<sig>)
    against a payload and API key. 200 when valid, 401 with the reason when not.
    """
    parsed = parse_signature_header(payload.signature_header)
    if parsed is None:
        await send_alert(
            AlertType.WEBHOOK_SIGNATURE_MALFORMED,
            "Received webhook with malformed signature header",
            severity="warning",
        )
        raise ValidationError(
            "Invalid signature format. Expected: t=<timestamp>,v1=<signature>"
        )

    timestamp, signature = parsed
    now = int(time.time())
    valid, error = validate_webhook_signature(
        payload.payload,
        signature,
        payload.api_key,
        timestamp,
        tolerance_seconds=get_settings().signature_tolerance_seconds,
        now=now,
    )
    result = SignatureValidationResponse(
        valid=valid, error=error, timestamp=timestamp, current_time=now
    )
    if valid:
        return result

    logger.warning("Signature validation failed: %s", error)
    payload_bytes = json.dumps(payload.payload, separators=(",", ":")).encode("utf-8")
    await send_alert(
        AlertType.WEBHOOK_SIGNATURE_INVALID,
        f"Signature validation failed: {error}",
        severity="warning",
        extra={"timestamp": timestamp, "payload_hash": compute_payload_hash(payload_bytes)},
    )
    return JSONResponse(status_code=401, content=result.model_dump())
