"""
Structured logging for the webhook pipeline.

JSON lines carry timestamp, level, logger, message, the request's correlation
ID, and whichever webhook identifiers the call site attached with
``extra=webhook_context(...)``. One correlation ID follows an inbound event
from the HTTP request through its status row and every log line in between.

LOG_FORMAT=text switches to a plain one-line format for local runs.
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Record attributes promoted to top-level JSON keys
WEBHOOK_FIELDS = ("event_id", "event_type", "vai_number", "delivery_id", "target_endpoint")

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(correlation_id)s] %(name)s: %(message)s"


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


def webhook_context(**ids: Any) -> dict[str, str]:
    """
    Build an ``extra=`` dict from webhook identifiers.
    Unset values are dropped and UUIDs are rendered as strings, so call sites
    can pass ORM attributes straight through.
    """
    unknown = set(ids) - set(WEBHOOK_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {', '.join(sorted(unknown))}")
    return {key: str(value) for key, value in ids.items() if value is not None}


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%S.%fZ"
            ),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in WEBHOOK_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class _CorrelationIdFilter(logging.Filter):
    """Exposes the context correlation ID to %-style text formats."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id() or "-"
        return True


def configure_structured_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Install a single stream handler on the root logger.
    Call once at startup; replaces any handlers already installed.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if log_format.lower() == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
        handler.addFilter(_CorrelationIdFilter())
    else:
        handler.setFormatter(StructuredJsonFormatter())
    root_logger.addHandler(handler)

    # Per-request access and SQL echo drown out pipeline events
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
