"""
Status updates derived from inbound webhook events (one per event).
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID, JSONB
from vaisync.database import Base


class StatusUpdate(Base):
    __tablename__ = "vai_status_updates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    vai_number = Column(String(255), nullable=False, index=True)
    status_type = Column(String(50), nullable=False, index=True)
    status_data = Column(JSONB, nullable=True)  # provider's opaque "data" object, stored as-is
    webhook_event_id = Column(
        UUID(as_uuid=True),
        ForeignKey("vairify_webhook_events.id"),
        nullable=False,
        unique=True,
    )
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    def __repr__(self) -> str:
        return f"<StatusUpdate {self.status_type} vai={self.vai_number}>"
