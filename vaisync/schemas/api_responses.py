"""
API response schemas for the webhook receiver and admin endpoints.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel


class WebhookAcceptedResponse(BaseModel):
    success: bool = True
    message: str = "Webhook received and processed"
    event_id: str


class RetryResults(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    exhausted: int = 0


class RetryRunResponse(BaseModel):
    success: bool = True
    results: RetryResults
    message: str


class SignatureValidationResponse(BaseModel):
    valid: bool
    error: Optional[str] = None
    timestamp: int
    current_time: int


class DispatchResponse(BaseModel):
    delivered: bool
    delivery_id: Optional[str] = None
    next_attempt_at: Optional[datetime] = None


class DeliverySummary(BaseModel):
    id: str
    target_endpoint: str
    event_type: Optional[str] = None
    status: str
    attempt_count: int
    max_attempts: int
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    response_status: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class DeliveryQueueResponse(BaseModel):
    deliveries: list[DeliverySummary]
    counts: dict[str, int]


class WebhookEventSummary(BaseModel):
    id: str
    event_type: str
    user_id: str
    vai_number: str
    processed: bool
    processed_at: Optional[datetime] = None
    created_at: datetime
    payload: dict[str, Any]


class WebhookEventListResponse(BaseModel):
    events: list[WebhookEventSummary]
    total: int


class ReplayResponse(BaseModel):
    success: bool
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    response_time_ms: int
    error_message: Optional[str] = None
