"""Initial marketplace schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _audit_columns():
    return [
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("updated_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("idx_users_role", "users", ["role"])

    op.create_table(
        "properties",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("property_type", sa.String(50), nullable=True),
        sa.Column("city", sa.String(255), nullable=True),
        sa.Column("price", sa.Numeric(14, 2), nullable=False),
        sa.Column("seller_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("broker_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("added_by_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("added_by_role", sa.String(20), nullable=False),
        sa.Column("adder_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("seller_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending_approval"),
        sa.Column("previous_status", sa.String(30), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("suspended_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspension_reason", sa.Text(), nullable=True),
        sa.Column("live_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("edit_permission_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edit_permission_fields", sa.JSON(), nullable=True),
        sa.Column("edit_permission_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("edit_permission_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("edit_permission_reason", sa.Text(), nullable=True),
        sa.Column("edit_permission_granted_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("lock_held", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("lock_holder_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("lock_reservation_id", sa.Uuid(), nullable=True),
        sa.Column("lock_reserved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lock_visit_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("lock_visit_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lock_confirmed_by_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("lock_confirmed_by_role", sa.String(20), nullable=True),
        sa.Column("lock_confirmation_method", sa.String(20), nullable=True),
        sa.Column("lock_booking_window_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lock_booking_window_end", sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        *_timestamps(),
    )
    op.create_index("idx_properties_status", "properties", ["status"])
    op.create_index("idx_properties_seller_id", "properties", ["seller_id"])
    op.create_index("idx_properties_broker_id", "properties", ["broker_id"])
    op.create_index("idx_properties_lock_held", "properties", ["lock_held"])

    op.create_table(
        "carts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("buyer_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "cart_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("cart_id", sa.Uuid(), sa.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("buyer_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("property_id", sa.Uuid(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("visit_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_time", sa.String(20), nullable=True),
        sa.Column("visit_type", sa.String(30), nullable=True),
        sa.Column("phone_number", sa.String(50), nullable=True),
        sa.Column("special_requests", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("visit_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_by_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("confirmed_by_role", sa.String(20), nullable=True),
        sa.Column("confirmation_method", sa.String(20), nullable=True),
        sa.Column("booking_window_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("booking_window_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("release_reason", sa.String(50), nullable=True),
        *_timestamps(),
    )
    # At most one active reservation per property
    op.create_index(
        "uq_cart_items_active_property",
        "cart_items",
        ["property_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index("idx_cart_items_buyer_status", "cart_items", ["buyer_id", "status"])
    op.create_index("idx_cart_items_status", "cart_items", ["status"])
    op.create_index("idx_cart_items_booking_window_end", "cart_items", ["booking_window_end"])

    op.create_table(
        "commissions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("broker_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("property_id", sa.Uuid(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("reservation_id", sa.Uuid(), sa.ForeignKey("cart_items.id"), nullable=True),
        sa.Column("property_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("commission_type", sa.String(20), nullable=False),
        sa.Column("rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("approved_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_method", sa.String(30), nullable=True),
        sa.Column("transaction_id", sa.String(255), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_override", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("original_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("override_reason", sa.Text(), nullable=True),
        *_audit_columns(),
        *_timestamps(),
        sa.UniqueConstraint("reservation_id", "commission_type", name="uq_commissions_reservation_type"),
    )
    op.create_index("idx_commissions_broker_status", "commissions", ["broker_id", "status"])
    op.create_index("idx_commissions_property_id", "commissions", ["property_id"])
    op.create_index("idx_commissions_type_status", "commissions", ["commission_type", "status"])

    op.create_table(
        "rules",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("rule_type", sa.String(100), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit_columns(),
        *_timestamps(),
    )
    op.create_index("idx_rules_type_active", "rules", ["rule_type", "is_active"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("priority", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_notifications_user_read", "notifications", ["user_id", "is_read"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource_type", sa.String(100), nullable=True),
        sa.Column("resource_id", sa.Uuid(), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_audit_logs_resource", "audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("idx_notifications_user_read", "notifications")
    op.drop_table("notifications")
    op.drop_index("idx_rules_type_active", "rules")
    op.drop_table("rules")
    op.drop_index("idx_commissions_type_status", "commissions")
    op.drop_index("idx_commissions_property_id", "commissions")
    op.drop_index("idx_commissions_broker_status", "commissions")
    op.drop_table("commissions")
    op.drop_index("idx_cart_items_booking_window_end", "cart_items")
    op.drop_index("idx_cart_items_status", "cart_items")
    op.drop_index("idx_cart_items_buyer_status", "cart_items")
    op.drop_index("uq_cart_items_active_property", "cart_items")
    op.drop_table("cart_items")
    op.drop_table("carts")
    op.drop_index("idx_properties_lock_held", "properties")
    op.drop_index("idx_properties_broker_id", "properties")
    op.drop_index("idx_properties_seller_id", "properties")
    op.drop_index("idx_properties_status", "properties")
    op.drop_table("properties")
    op.drop_index("idx_users_role", "users")
    op.drop_index("ix_users_email", "users")
    op.drop_table("users")
