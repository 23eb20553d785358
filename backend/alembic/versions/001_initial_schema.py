"""Initial schema: catalog, reservations, orders, payments, scans and queue.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'attendee'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'INR'")),
        sa.Column("is_rsvp", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("queue_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("promoter_discounts_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("promoter_discount_type", sa.String(10), nullable=False, server_default=sa.text("'percent'")),
        sa.Column("promoter_discount_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("platform_fee_type", sa.String(10), nullable=False, server_default=sa.text("'percent'")),
        sa.Column("platform_fee_value", sa.Integer(), nullable=True),
        sa.Column("payment_fee_bps", sa.Integer(), nullable=True),
        sa.Column("fee_tax_bps", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    # Listings are always filtered and ordered by date
    op.create_index("ix_events_date", "events", ["date"])

    op.create_table(
        "ticket_tiers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("entry_type", sa.String(50), nullable=False, server_default=sa.text("'general'")),
        sa.Column("price", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("remaining", sa.Integer(), nullable=False),
        sa.Column("min_per_order", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("max_per_order", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("sales_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("promoter_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("promoter_discount_type", sa.String(10), nullable=True),
        sa.Column("promoter_discount_value", sa.Integer(), nullable=True),
        sa.Column("scheduled_prices", sa.JSON(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("remaining >= 0", name="check_tier_remaining_non_negative"),
        sa.CheckConstraint("remaining <= capacity", name="check_tier_remaining_lte_capacity"),
        sa.CheckConstraint("capacity >= 0", name="check_tier_capacity_non_negative"),
        sa.CheckConstraint("price >= 0", name="check_tier_price_non_negative"),
    )
    op.create_index("ix_ticket_tiers_event_id", "ticket_tiers", ["event_id"])

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("discount_type", sa.String(10), nullable=False),
        sa.Column("discount_value", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_redemptions", sa.Integer(), nullable=True),
        sa.Column("max_per_user", sa.Integer(), nullable=True),
        sa.Column("tier_ids", sa.JSON(), nullable=True),
        sa.Column("redemption_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.UniqueConstraint("event_id", "code", name="uq_promo_codes_event_code"),
    )
    op.create_index("ix_promo_codes_event_id", "promo_codes", ["event_id"])

    op.create_table(
        "promoter_codes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("promoter_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("use_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.UniqueConstraint("event_id", "code", name="uq_promoter_codes_event_code"),
    )
    op.create_index("ix_promoter_codes_event_id", "promoter_codes", ["event_id"])

    op.create_table(
        "promo_redemptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("promo_code_id", sa.String(36), sa.ForeignKey("promo_codes.id"), nullable=False),
        sa.Column("order_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("discount_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("promo_code_id", "order_id", name="uq_promo_redemptions_code_order"),
    )
    op.create_index("ix_promo_redemptions_promo_code_id", "promo_redemptions", ["promo_code_id"])
    op.create_index("ix_promo_redemptions_user_id", "promo_redemptions", ["user_id"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("requester_id", sa.Integer(), nullable=False),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("queue_ticket_id", sa.String(36), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_reservations_event_id", "reservations", ["event_id"])
    op.create_index("ix_reservations_requester_id", "reservations", ["requester_id"])
    # Sweeper: active holds ordered by expiry
    op.create_index("ix_reservations_status_expires", "reservations", ["status", "expires_at"])

    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("reservation_id", sa.String(36), sa.ForeignKey("reservations.id"), nullable=False),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("buyer_id", sa.Integer(), nullable=False),
        sa.Column("buyer_name", sa.String(255), nullable=True),
        sa.Column("buyer_email", sa.String(255), nullable=True),
        sa.Column("buyer_phone", sa.String(32), nullable=True),
        sa.Column("tickets", sa.JSON(), nullable=False),
        sa.Column("subtotal", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discounts", sa.JSON(), nullable=False),
        sa.Column("discount_total", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("fees", sa.JSON(), nullable=False),
        sa.Column("fee_total", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'INR'")),
        sa.Column("is_rsvp", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending_payment'")),
        sa.Column("payment_intent_id", sa.String(64), nullable=True),
        sa.Column("payment_id", sa.String(128), nullable=True),
        sa.Column("confirmation_source", sa.String(20), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("promo_code_id", sa.String(36), nullable=True),
        sa.Column("promo_code", sa.String(64), nullable=True),
        sa.Column("promoter_code_id", sa.String(36), nullable=True),
        sa.Column("promoter_code", sa.String(64), nullable=True),
        sa.Column("audit_ledger", sa.JSON(), nullable=False),
        *_timestamps(),
        # One order per reservation, even when checkout calls race
        sa.UniqueConstraint("reservation_id", name="uq_orders_reservation_id"),
    )
    op.create_index("ix_orders_event_id", "orders", ["event_id"])
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_payment_intent_id", "orders", ["payment_intent_id"])
    op.create_index("ix_orders_status_created", "orders", ["status", "created_at"])
    op.create_index("ix_orders_buyer_status", "orders", ["buyer_id", "status"])

    op.create_table(
        "payment_intents",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("order_id", sa.String(36), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("receipt", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'created'")),
        sa.Column("notes", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_payment_intents_order_id", "payment_intents", ["order_id"])

    op.create_table(
        "payment_webhook_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payment_id", sa.String(128), nullable=False),
        sa.Column("order_id", sa.String(36), nullable=True),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'processed'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("provider", "payment_id", name="uq_webhook_provider_payment_id"),
    )
    op.create_index("ix_webhook_events_order", "payment_webhook_events", ["order_id"])

    op.create_table(
        "scan_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("valid_key", sa.String(128), nullable=False),
        sa.Column("order_id", sa.String(36), nullable=False),
        sa.Column("ticket_id", sa.String(64), nullable=False),
        sa.Column("event_id", sa.String(36), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("result", sa.String(20), nullable=False, server_default=sa.text("'valid'")),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("venue_id", sa.String(64), nullable=True),
        sa.Column("staff_id", sa.Integer(), nullable=True),
        sa.Column("staff_name", sa.String(255), nullable=True),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        # At most one valid admission per (order, ticket)
        sa.UniqueConstraint("valid_key", name="uq_scan_records_valid_key"),
    )
    op.create_index("ix_scan_records_order_id", "scan_records", ["order_id"])
    op.create_index("ix_scan_records_event_id", "scan_records", ["event_id"])

    op.create_table(
        "scan_attempts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("result", sa.String(20), nullable=False),
        sa.Column("order_id", sa.String(36), nullable=True),
        sa.Column("ticket_id", sa.String(64), nullable=True),
        sa.Column("event_id", sa.String(36), nullable=True),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("venue_id", sa.String(64), nullable=True),
        sa.Column("staff_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_scan_attempts_event_created", "scan_attempts", ["event_id", "created_at"])

    op.create_table(
        "bound_devices",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("venue_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_bound_devices_venue_id", "bound_devices", ["venue_id"])

    op.create_table(
        "queue_tickets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), nullable=False),
        sa.Column("requester_id", sa.String(160), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("lane", sa.String(10), nullable=False),
        sa.Column("score", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'waiting'")),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("admitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admission_token", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_queue_tickets_event_status", "queue_tickets", ["event_id", "status"])
    op.create_index("ix_queue_tickets_event_requester", "queue_tickets", ["event_id", "requester_id"])


def downgrade() -> None:
    op.drop_table("queue_tickets")
    op.drop_table("bound_devices")
    op.drop_table("scan_attempts")
    op.drop_table("scan_records")
    op.drop_table("payment_webhook_events")
    op.drop_table("payment_intents")
    op.drop_table("orders")
    op.drop_table("reservations")
    op.drop_table("promo_redemptions")
    op.drop_table("promoter_codes")
    op.drop_table("promo_codes")
    op.drop_table("ticket_tiers")
    op.drop_table("events")
    op.drop_table("users")
