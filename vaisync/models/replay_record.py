"""
History of operator-initiated webhook replays.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from vaisync.database import Base


class ReplayRecord(Base):
    __tablename__ = "webhook_replay_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    original_webhook_id = Column(
        UUID(as_uuid=True), ForeignKey("vairify_webhook_events.id"), nullable=False, index=True
    )
    target_url = Column(Text, nullable=False)
    payload = Column(JSONB, nullable=False)
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    replayed_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
