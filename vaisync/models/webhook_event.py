"""
Inbound Vairify webhook audit trail.
Every delivery is recorded before any status is derived from it; rows are
never deleted, and ``processed`` flips to true exactly once.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Boolean, Column, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from vaisync.database import Base


class WebhookEventType:
    STATUS_CHANGED = "user.status_changed"
    ACCOUNT_UPDATED = "user.account_updated"
    VAI_REVOKED = "user.vai_revoked"
    VAI_SUSPENDED = "user.vai_suspended"

    ALL = (STATUS_CHANGED, ACCOUNT_UPDATED, VAI_REVOKED, VAI_SUSPENDED)


class InboundWebhookEvent(Base):
    __tablename__ = "vairify_webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(String(50), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    vai_number = Column(String(255), nullable=False, index=True)
    payload = Column(JSONB, nullable=False)
    signature = Column(Text, nullable=True)
    processed = Column(Boolean, nullable=False, default=False, server_default="false", index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    correlation_id = Column(String(64), nullable=True)
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    __table_args__ = (
        Index("ix_vairify_webhook_events_processed_created", "processed", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<InboundWebhookEvent {self.event_type} vai={self.vai_number} processed={self.processed}>"
