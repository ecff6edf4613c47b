"""
Database models - import all models here so Alembic can discover them.
"""
from vaisync.models.webhook_event import InboundWebhookEvent, WebhookEventType
from vaisync.models.status_update import StatusUpdate
from vaisync.models.outbound_delivery import OutboundDelivery, DeliveryStatus
from vaisync.models.replay_record import ReplayRecord

__all__ = [
    "InboundWebhookEvent",
    "WebhookEventType",
    "StatusUpdate",
    "OutboundDelivery",
    "DeliveryStatus",
    "ReplayRecord",
]
