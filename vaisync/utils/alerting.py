"""
Operator alerting for webhook pipeline incidents.

Alert channels:
1. Structured log (always) - at ERROR/CRITICAL level
2. Webhook (configurable) - Discord/Slack URL via ALERT_WEBHOOK_URL env var

Rate limiting: per-type cooldowns stored in Redis (SET NX EX), with an
in-memory fallback so a Redis outage cannot turn into an alert storm.
"""
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300

# Exhaustion alerts name a specific delivery, so they get a short cooldown
ALERT_COOLDOWN_OVERRIDES: dict[str, int] = {
    "delivery_exhausted": 60,
    "webhook_signature_invalid": 600,
}

_local_cooldowns: dict[str, float] = {}  # cooldown key -> expiry (monotonic)


class AlertType:
    """Alert type constants."""
    DELIVERY_EXHAUSTED = "delivery_exhausted"
    WEBHOOK_SIGNATURE_INVALID = "webhook_signature_invalid"
    WEBHOOK_SIGNATURE_MALFORMED = "webhook_signature_malformed"
    STATUS_DERIVATION_FAILED = "status_derivation_failed"


def _get_cooldown_seconds(alert_type: str) -> int:
    return ALERT_COOLDOWN_OVERRIDES.get(alert_type, ALERT_COOLDOWN_SECONDS)


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    extra: Optional[dict] = None,
    dedup_key: Optional[str] = None,
) -> None:
    """
    Send an alert through all configured channels.
    Rate-limited per (alert_type, dedup_key). Never raises.
    """
    cooldown_key = f"{alert_type}:{dedup_key}" if dedup_key else alert_type
    if not await _acquire_cooldown(cooldown_key, _get_cooldown_seconds(alert_type)):
        return

    from vaisync.utils.logging import get_correlation_id
    cid = correlation_id or get_correlation_id()

    log_message = f"ALERT [{alert_type}]: {message}"
    if cid:
        log_message += f" (correlation_id={cid})"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    await _send_webhook_alert(alert_type, message, severity, cid, extra)


async def _acquire_cooldown(key: str, cooldown: int) -> bool:
    """Atomically check-and-set the cooldown. True means the alert should go out."""
    try:
        from vaisync.utils.redis_client import get_redis
        redis = await get_redis()
        acquired = await redis.set(f"vaisync:alert_cooldown:{key}", "1", nx=True, ex=cooldown)
        return bool(acquired)
    except Exception as e:
        logger.debug("Alert cooldown Redis check failed, using in-memory fallback: %s", str(e))
        now = time.monotonic()
        if now < _local_cooldowns.get(key, 0):
            return False
        _local_cooldowns[key] = now + cooldown
        return True


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    severity: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
) -> None:
    """Post the alert to the configured Discord/Slack webhook."""
    try:
        from vaisync.config import get_settings
        webhook_url = get_settings().alert_webhook_url
        if not webhook_url:
            return

        import httpx

        prefix = {"critical": "\U0001f6a8", "error": "❌", "warning": "⚠️"}.get(
            severity, "ℹ️"
        )
        content = f"{prefix} **{alert_type}**\n{message}"
        if correlation_id:
            content += f"\n`correlation_id: {correlation_id}`"
        for key, val in (extra or {}).items():
            content += f"\n`{key}: {val}`"

        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        logger.warning("Failed to send webhook alert: %s", str(e))
