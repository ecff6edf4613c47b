"""
Webhook signature handling.

Inbound (Vairify): ``x-vairify-signature`` is hex SHA-256 over ``body + secret``.
Not an HMAC; this is the scheme the provider signs with.

Outbound (partner callbacks): HMAC-SHA256 over ``"<timestamp>.<json>"``,
base64-encoded, sent as ``X-Webhook-Signature: t=<ts>,v1=<sig>``.
"""
import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Optional, Union

from vaisync.utils.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

VAIRIFY_SIGNATURE_HEADER = "x-vairify-signature"
OUTBOUND_SIGNATURE_HEADER = "X-Webhook-Signature"
DEFAULT_TOLERANCE_SECONDS = 300


def _to_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def compute_vairify_signature(body: Union[bytes, str], secret: str) -> str:
    """Expected inbound signature: sha256(body + secret), lowercase hex."""
    return hashlib.sha256(_to_bytes(body) + _to_bytes(secret)).hexdigest()


def verify_vairify_signature(
    body: Union[bytes, str],
    signature: Optional[str],
    secret: Optional[str],
) -> bool:
    """Constant-time comparison of the presented signature against the expected one."""
    if not secret or not signature:
        return False
    expected = compute_vairify_signature(body, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def check_vairify_signature(
    body: Union[bytes, str],
    signature: Optional[str],
    secret: Optional[str],
) -> None:
    """
    Enforce the inbound signature policy.

    - secret + signature, mismatch -> AuthenticationError
    - secret, no signature         -> warn and accept (unsafe, kept for provider compat)
    - no secret                    -> warn and accept without verification
    """
    if not secret:
        logger.warning(
            "VAIRIFY_WEBHOOK_SECRET not configured - skipping signature validation"
        )
        return

    if not signature:
        logger.warning("Webhook secret configured but no signature provided")
        return

    if not verify_vairify_signature(body, signature, secret):
        raise AuthenticationError("Invalid signature")


def serialize_payload(payload: Any) -> str:
    """Compact JSON; the exact text that is both signed and sent."""
    return json.dumps(payload, separators=(",", ":"))


def generate_webhook_signature(payload: Any, secret: str, timestamp: int) -> str:
    """Sign an outbound payload: base64(HMAC-SHA256(secret, "<ts>.<json>"))."""
    return sign_serialized_payload(serialize_payload(payload), secret, timestamp)


def sign_serialized_payload(payload_string: str, secret: str, timestamp: int) -> str:
    message = f"{timestamp}.{payload_string}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def create_signature_header(timestamp: int, signature: str) -> str:
    return f"t={timestamp},v1={signature}"


def sign_outbound_payload(
    payload: Any,
    secret: str,
    timestamp: Optional[int] = None,
    serialized: Optional[str] = None,
) -> str:
    """
    Full ``X-Webhook-Signature`` header value for an outbound payload.
    Pass ``serialized`` to sign text that was already produced for the request body.
    """
    ts = int(time.time()) if timestamp is None else timestamp
    if serialized is None:
        serialized = serialize_payload(payload)
    return create_signature_header(ts, sign_serialized_payload(serialized, secret, ts))


def parse_signature_header(header: Optional[str]) -> Optional[tuple[int, str]]:
    """
    Parse ``t=<timestamp>,v1=<signature>``.
    Returns (timestamp, signature) or None if the header is malformed.
    """
    if not header:
        return None

    timestamp: Optional[int] = None
    signature: Optional[str] = None
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None
        elif key == "v1":
            # base64 values may carry '=' padding, partition keeps it intact
            signature = value

    if timestamp is None or not signature:
        return None
    return timestamp, signature


def validate_webhook_signature(
    payload: Any,
    signature: str,
    secret: str,
    timestamp: int,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[int] = None,
) -> tuple[bool, Optional[str]]:
    """
    Validate an outbound-style signature. Returns (valid, error_message).
    Rejects timestamps outside the tolerance window to block replays.
    """
    current = int(time.time()) if now is None else now
    age = abs(current - timestamp)
    if age > tolerance_seconds:
        return False, f"Timestamp too old. Request age: {age}s, tolerance: {tolerance_seconds}s"

    expected = generate_webhook_signature(payload, secret, timestamp)
    if len(signature) != len(expected):
        return False, "Signature length mismatch"
    if not hmac.compare_digest(expected, signature):
        return False, "Signature mismatch"
    return True, None


def compute_payload_hash(body: bytes) -> str:
    """SHA-256 of the raw payload, for audit logging."""
    return hashlib.sha256(body).hexdigest()
