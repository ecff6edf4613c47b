"""Webhook reliability: inbound events, status updates, delivery queue, replay history

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- Inbound Vairify events (audit trail, never deleted) ---
    op.create_table(
        "vairify_webhook_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("vai_number", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("signature", sa.Text),
        sa.Column("processed", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("correlation_id", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_vairify_webhook_events_event_type", "vairify_webhook_events", ["event_type"])
    op.create_index("ix_vairify_webhook_events_user_id", "vairify_webhook_events", ["user_id"])
    op.create_index("ix_vairify_webhook_events_vai_number", "vairify_webhook_events", ["vai_number"])
    op.create_index("ix_vairify_webhook_events_processed", "vairify_webhook_events", ["processed"])
    op.create_index(
        "ix_vairify_webhook_events_processed_created", "vairify_webhook_events",
        ["processed", "created_at"],
    )

    # --- Status updates derived 1:1 from events ---
    op.create_table(
        "vai_status_updates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("vai_number", sa.String(255), nullable=False),
        sa.Column("status_type", sa.String(50), nullable=False),
        sa.Column("status_data", postgresql.JSONB),
        sa.Column(
            "webhook_event_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("vairify_webhook_events.id"), nullable=False, unique=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_vai_status_updates_vai_number", "vai_status_updates", ["vai_number"])
    op.create_index("ix_vai_status_updates_status_type", "vai_status_updates", ["status_type"])

    # --- Outbound partner delivery queue ---
    op.create_table(
        "webhook_delivery_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("target_endpoint", sa.Text, nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("event_type", sa.String(50)),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="5"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.Text),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True)),
        sa.Column("response_status", sa.Integer),
        sa.Column("response_body", sa.Text),
        sa.Column("response_time_ms", sa.Integer),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("attempt_count <= max_attempts", name="ck_webhook_delivery_attempts_bounded"),
    )
    op.create_index(
        "ix_webhook_delivery_queue_status_next", "webhook_delivery_queue",
        ["status", "next_attempt_at"],
    )

    # --- Operator replay history ---
    op.create_table(
        "webhook_replay_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "original_webhook_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("vairify_webhook_events.id"), nullable=False,
        ),
        sa.Column("target_url", sa.Text, nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("response_status", sa.Integer),
        sa.Column("response_body", sa.Text),
        sa.Column("response_time_ms", sa.Integer),
        sa.Column("success", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("error_message", sa.Text),
        sa.Column("replayed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_webhook_replay_history_original_webhook_id", "webhook_replay_history",
        ["original_webhook_id"],
    )


def downgrade() -> None:
    op.drop_table("webhook_replay_history")
    op.drop_table("webhook_delivery_queue")
    op.drop_table("vai_status_updates")
    op.drop_table("vairify_webhook_events")
