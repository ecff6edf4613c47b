"""
Webhook payload schemas - raw input from the verification provider and
partner tooling. Provider-specific extension fields are carried through untouched.
"""
from typing import Any, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


VairifyEventType = Literal[
    "user.status_changed",
    "user.account_updated",
    "user.vai_revoked",
    "user.vai_suspended",
]


class VairifyEventData(BaseModel):
    """Opaque status payload. Only status/reason are named; anything else passes through."""
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    reason: Optional[str] = None


class VairifyWebhookPayload(BaseModel):
    """Vairify status callback body."""
    model_config = ConfigDict(extra="allow")

    event_type: VairifyEventType
    user_id: str = Field(min_length=1)
    vai_number: str = Field(min_length=1)
    timestamp: str
    data: VairifyEventData = Field(default_factory=VairifyEventData)


class SignatureValidationRequest(BaseModel):
    """Partner tooling: check an X-Webhook-Signature header against a payload."""
    payload: Any
    signature_header: str
    api_key: str


class DispatchRequest(BaseModel):
    """Partner notification to push now; queued for retry if the first attempt fails."""
    target_url: str = Field(min_length=1)
    payload: dict[str, Any]
    event_type: Optional[str] = None


class ReplayRequest(BaseModel):
    """Operator replay of a stored inbound event to an arbitrary endpoint."""
    target_url: str = Field(min_length=1)
    custom_payload: Optional[dict[str, Any]] = None
