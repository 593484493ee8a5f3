"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-16

Creates all tables for EventPass:
users, events, tickets, payment_sessions.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

event_status = sa.Enum("draft", "pending_payment", "published", "cancelled", name="eventstatus")
event_type = sa.Enum("free", "paid", name="eventtype")
ticket_status = sa.Enum("pending_payment", "registered", "cancelled", name="ticketstatus")
payment_type = sa.Enum("event_publishing", "event_registration", name="paymenttype")
payment_status = sa.Enum("pending", "completed", "abandoned", "failed", name="paymentstatus")


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- events ---
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(36), primary_key=True),
        sa.Column("organizer_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(2000), nullable=True),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("event_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_recurring", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("recurrence_pattern", sa.JSON, nullable=True),
        sa.Column("max_attendees", sa.Integer, nullable=False, server_default="0"),
        sa.Column("current_attendees", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", event_status, nullable=False, server_default="draft"),
        sa.Column("event_type", event_type, nullable=False, server_default="free"),
        sa.Column("ticket_price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- tickets ---
    op.create_table(
        "tickets",
        sa.Column("ticket_id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.event_id"), nullable=False),
        sa.Column("instance_id", sa.String(80), nullable=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("status", ticket_status, nullable=False, server_default="registered"),
        sa.Column("special_requests", sa.String(1000), nullable=True),
        sa.Column("payment_reference", sa.String(64), nullable=True),
        sa.Column("checked_in", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_in_by", sa.String(36), sa.ForeignKey("users.user_id"), nullable=True),
        sa.Column("qr_generated", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("verification_token", sa.String(512), nullable=True),
        sa.Column("token_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_tickets_event_id", "tickets", ["event_id"])
    op.create_index("ix_tickets_instance_id", "tickets", ["instance_id"])
    op.create_index("ix_tickets_user_id", "tickets", ["user_id"])

    # --- payment_sessions ---
    op.create_table(
        "payment_sessions",
        sa.Column("reference", sa.String(64), primary_key=True),
        sa.Column("payment_type", payment_type, nullable=False),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.event_id"), nullable=False),
        sa.Column("target_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", payment_status, nullable=False, server_default="pending"),
        sa.Column("payment_url", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("payment_sessions")
    op.drop_index("ix_tickets_user_id", table_name="tickets")
    op.drop_index("ix_tickets_instance_id", table_name="tickets")
    op.drop_index("ix_tickets_event_id", table_name="tickets")
    op.drop_table("tickets")
    op.drop_table("events")
    op.drop_table("users")
    bind = op.get_bind()
    for enum_type in (payment_status, payment_type, ticket_status, event_type, event_status):
        enum_type.drop(bind, checkfirst=True)
