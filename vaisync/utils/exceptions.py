"""
Error taxonomy for the webhook pipeline.

Each error knows the HTTP status it maps to and the JSON body it renders as
({"error": ..., "details": ...}). DeliveryError never reaches an HTTP caller:
the retry scheduler captures it and feeds it to the delivery tracker.
"""
from typing import Any, Optional


class WebhookError(Exception):
    """Base class for pipeline errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class AuthenticationError(WebhookError):
    """Presented webhook signature does not match. Never retried."""

    status_code = 401

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class ValidationError(WebhookError):
    """Malformed payload or missing required fields."""

    status_code = 400


class NotFoundError(WebhookError):
    status_code = 404


class StorageError(WebhookError):
    """
    An insert/update against the store failed.
    For inbound events, partial state is left in place for reconciliation.
    """

    status_code = 500

    @classmethod
    def from_exception(cls, step: str, exc: Exception) -> "StorageError":
        return cls(f"Failed to {step}", details=f"{type(exc).__name__}: {exc}")


class DeliveryError(Exception):
    """An outbound delivery attempt failed (transport error, timeout, or non-2xx)."""

    def __init__(
        self,
        message: str,
        response_status: Optional[int] = None,
        response_body: Optional[str] = None,
        response_time_ms: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.response_status = response_status
        self.response_body = response_body
        self.response_time_ms = response_time_ms
