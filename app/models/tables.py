"""
Database models — the "truth layer."

Design principles:
  - Touchpoints are append-only (written once by /api/collect)
  - Orders are mutable only in their status; every change is logged in order_status_events
  - Attribution rows are written exclusively by the linker and never updated
  - Attribution rows belong to their order (cascade delete); touchpoints are shared
  - Settings hold secrets only as SHA-256 hashes
"""

from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Visitor identity
# ---------------------------------------------------------------------------

class Visitor(Base):
    __tablename__ = "visitors"

    id = Column(Uuid, primary_key=True, default=uuid4)
    vid = Column(String(64), nullable=False, unique=True, index=True)  # opaque id from the tracker cookie
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    sessions = relationship("TrackingSession", back_populates="visitor")


class TrackingSession(Base):
    __tablename__ = "sessions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    sid = Column(String(64), nullable=False, index=True)
    visitor_id = Column(Uuid, ForeignKey("visitors.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    visitor = relationship("Visitor", back_populates="sessions")


# ---------------------------------------------------------------------------
# Touchpoints (append-only)
# ---------------------------------------------------------------------------

class Touchpoint(Base):
    """One tracked visitor interaction with its marketing metadata."""
    __tablename__ = "touchpoints"

    id = Column(Uuid, primary_key=True, default=uuid4)
    visitor_id = Column(Uuid, ForeignKey("visitors.id"), nullable=False)
    session_id = Column(Uuid, ForeignKey("sessions.id"), nullable=True)
    event_type = Column(String(50), nullable=False)       # page_view, session_start, add_to_cart, ...

    # --- UTM ---
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)      # reported as "creative"
    utm_term = Column(String(255), nullable=True)

    # --- Platform click ids ---
    fbclid = Column(String(255), nullable=True)           # Meta
    ttclid = Column(String(255), nullable=True)           # TikTok
    gclid = Column(String(255), nullable=True)            # Google Ads
    wbraid = Column(String(255), nullable=True)           # Google Ads (web-to-app)
    gbraid = Column(String(255), nullable=True)           # Google Ads (app-to-app)
    msclkid = Column(String(255), nullable=True)          # Microsoft Ads
    sccid = Column(String(255), nullable=True)            # Snapchat

    # --- Context ---
    referrer = Column(Text, nullable=True)
    landing_url = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)        # SHA-256, never plaintext
    device_type = Column(String(20), nullable=True)
    browser = Column(String(50), nullable=True)
    os = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_touchpoints_visitor_timestamp", "visitor_id", "timestamp"),
    )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class Order(Base):
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid4)
    order_id = Column(String(255), nullable=False, unique=True, index=True)  # external (store) id
    visitor_id = Column(Uuid, ForeignKey("visitors.id"), nullable=True, index=True)
    store_id = Column(String(255), nullable=True)
    total_cost = Column(Numeric(12, 2), nullable=False)
    shipping_cost = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), default="USD")
    status = Column(String(50), nullable=False)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(64), nullable=True)    # SHA-256
    address = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    status_events = relationship("OrderStatusEvent", back_populates="order", cascade="all, delete-orphan")
    attributions = relationship("Attribution", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_orders_created_status", "created_at", "status"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Uuid, primary_key=True, default=uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(255), nullable=False)
    variant_id = Column(String(255), nullable=True)
    sku = Column(String(255), nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="items")


class OrderStatusEvent(Base):
    """Append-only status history for an order."""
    __tablename__ = "order_status_events"

    id = Column(Uuid, primary_key=True, default=uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    old_status = Column(String(50), nullable=True)
    new_status = Column(String(50), nullable=False)
    payment_ref_id = Column(String(255), nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="status_events")


# ---------------------------------------------------------------------------
# Attribution (written by app.core.linker only)
# ---------------------------------------------------------------------------

class Attribution(Base):
    __tablename__ = "attributions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    touchpoint_id = Column(Uuid, ForeignKey("touchpoints.id"), nullable=False, index=True)
    model = Column(String(20), nullable=False)            # first_touch, last_touch, assisted
    time_to_purchase = Column(Integer, nullable=False)    # seconds
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="attributions")
    touchpoint = relationship("Touchpoint")

    __table_args__ = (
        UniqueConstraint("order_id", "model", "touchpoint_id", name="uq_attributions_order_model_touchpoint"),
        Index("ix_attributions_order_model", "order_id", "model"),
    )


# ---------------------------------------------------------------------------
# Dashboard-managed settings
# ---------------------------------------------------------------------------

class Setting(Base):
    """Key/value settings written from the admin API (secrets stored hashed)."""
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
