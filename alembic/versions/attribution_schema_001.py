"""Initial schema: visitors, sessions, touchpoints, orders, attributions

Revision ID: attribution_schema_001
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "attribution_schema_001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "visitors",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("vid", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_visitors_vid", "visitors", ["vid"], unique=True)

    op.create_table(
        "sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("sid", sa.String(64), nullable=False),
        sa.Column("visitor_id", sa.Uuid(), sa.ForeignKey("visitors.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_sessions_sid", "sessions", ["sid"])
    op.create_index("ix_sessions_visitor_id", "sessions", ["visitor_id"])

    op.create_table(
        "touchpoints",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("visitor_id", sa.Uuid(), sa.ForeignKey("visitors.id"), nullable=False),
        sa.Column("session_id", sa.Uuid(), sa.ForeignKey("sessions.id"), nullable=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("utm_source", sa.String(255), nullable=True),
        sa.Column("utm_medium", sa.String(255), nullable=True),
        sa.Column("utm_campaign", sa.String(255), nullable=True),
        sa.Column("utm_content", sa.String(255), nullable=True),
        sa.Column("utm_term", sa.String(255), nullable=True),
        sa.Column("fbclid", sa.String(255), nullable=True),
        sa.Column("ttclid", sa.String(255), nullable=True),
        sa.Column("gclid", sa.String(255), nullable=True),
        sa.Column("wbraid", sa.String(255), nullable=True),
        sa.Column("gbraid", sa.String(255), nullable=True),
        sa.Column("msclkid", sa.String(255), nullable=True),
        sa.Column("sccid", sa.String(255), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("landing_url", sa.Text(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("device_type", sa.String(20), nullable=True),
        sa.Column("browser", sa.String(50), nullable=True),
        sa.Column("os", sa.String(50), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_touchpoints_visitor_timestamp", "touchpoints", ["visitor_id", "timestamp"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("order_id", sa.String(255), nullable=False),
        sa.Column("visitor_id", sa.Uuid(), sa.ForeignKey("visitors.id"), nullable=True),
        sa.Column("store_id", sa.String(255), nullable=True),
        sa.Column("total_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("shipping_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(64), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_orders_order_id", "orders", ["order_id"], unique=True)
    op.create_index("ix_orders_visitor_id", "orders", ["visitor_id"])
    op.create_index("ix_orders_created_status", "orders", ["created_at", "status"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("order_id", sa.Uuid(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.String(255), nullable=False),
        sa.Column("variant_id", sa.String(255), nullable=True),
        sa.Column("sku", sa.String(255), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "order_status_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("order_id", sa.Uuid(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("old_status", sa.String(50), nullable=True),
        sa.Column("new_status", sa.String(50), nullable=False),
        sa.Column("payment_ref_id", sa.String(255), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_order_status_events_order_id", "order_status_events", ["order_id"])

    op.create_table(
        "attributions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("order_id", sa.Uuid(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("touchpoint_id", sa.Uuid(), sa.ForeignKey("touchpoints.id"), nullable=False),
        sa.Column("model", sa.String(20), nullable=False),
        sa.Column("time_to_purchase", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("order_id", "model", "touchpoint_id", name="uq_attributions_order_model_touchpoint"),
    )
    op.create_index("ix_attributions_order_id", "attributions", ["order_id"])
    op.create_index("ix_attributions_touchpoint_id", "attributions", ["touchpoint_id"])
    op.create_index("ix_attributions_order_model", "attributions", ["order_id", "model"])


def downgrade() -> None:
    op.drop_table("attributions")
    op.drop_table("order_status_events")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("touchpoints")
    op.drop_table("sessions")
    op.drop_table("visitors")
