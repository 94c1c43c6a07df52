"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("organizer_id", sa.String(length=36), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_seated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ga_capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="inr"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_events_organizer_id", "events", ["organizer_id"])
    op.create_index("ix_events_starts_at", "events", ["starts_at"])

    op.create_table(
        "unit_types",
        sa.Column("event_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=60), primary_key=True),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("color", sa.String(length=9), nullable=False, server_default="#4F46E5"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "inventory_units",
        sa.Column("event_id", sa.String(length=36), primary_key=True),
        sa.Column("unit_id", sa.String(length=40), primary_key=True),
        sa.Column("unit_type", sa.String(length=60), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("section", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("row_label", sa.String(length=10), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "holds",
        sa.Column("event_id", sa.String(length=36), primary_key=True),
        sa.Column("unit_id", sa.String(length=40), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_holds_booking_id", "holds", ["booking_id"])
    op.create_index("ix_holds_expires_at", "holds", ["expires_at"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ticket_number", sa.String(length=32), nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="inr"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("failure_reason", sa.String(length=120), nullable=True),
        sa.Column("payment_ref", sa.String(length=120), nullable=True),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_bookings_ticket_number", "bookings", ["ticket_number"], unique=True)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_payment_ref", "bookings", ["payment_ref"])
    op.create_index("ix_bookings_event_status", "bookings", ["event_id", "status"])

    op.create_table(
        "booking_units",
        sa.Column("booking_id", sa.String(length=36), primary_key=True),
        sa.Column("unit_id", sa.String(length=40), primary_key=True),
        sa.Column("unit_type", sa.String(length=60), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
    )

    op.create_table(
        "allocations",
        sa.Column("event_id", sa.String(length=36), primary_key=True),
        sa.Column("unit_id", sa.String(length=40), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("allocated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_allocations_booking_id", "allocations", ["booking_id"])

    op.create_table(
        "event_attendees",
        sa.Column("event_id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor", sa.String(length=60), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor", "audit_logs", ["actor"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("event_attendees")
    op.drop_table("allocations")
    op.drop_table("booking_units")
    op.drop_table("bookings")
    op.drop_table("holds")
    op.drop_table("inventory_units")
    op.drop_table("unit_types")
    op.drop_table("events")
