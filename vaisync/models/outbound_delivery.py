"""
Outbound partner webhook delivery queue.
A row is created when a delivery first fails and is then driven by the retry
scheduler until it is delivered or exhausted. Terminal rows are kept for audit.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from vaisync.database import Base


class DeliveryStatus:
    PENDING = "pending"
    RETRYING = "retrying"
    IN_FLIGHT = "in_flight"  # leased by a retry pass; next_attempt_at is the lease expiry
    DELIVERED = "delivered"
    EXHAUSTED = "exhausted"

    TERMINAL = (DELIVERED, EXHAUSTED)
    ALL = (PENDING, RETRYING, IN_FLIGHT, DELIVERED, EXHAUSTED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutboundDelivery(Base):
    __tablename__ = "webhook_delivery_queue"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    target_endpoint = Column(Text, nullable=False)
    payload = Column(JSONB, nullable=False)
    event_type = Column(String(50), nullable=True)
    status = Column(
        String(20), nullable=False, default=DeliveryStatus.PENDING, server_default="pending"
    )
    attempt_count = Column(Integer, nullable=False, default=0, server_default="0")
    max_attempts = Column(Integer, nullable=False, default=5, server_default="5")
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_webhook_delivery_queue_status_next", "status", "next_attempt_at"),
        CheckConstraint("attempt_count <= max_attempts", name="ck_webhook_delivery_attempts_bounded"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in DeliveryStatus.TERMINAL

    def __repr__(self) -> str:
        return (
            f"<OutboundDelivery {self.status} "
            f"{self.attempt_count}/{self.max_attempts} -> {self.target_endpoint}>"
        )
