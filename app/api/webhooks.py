"""
Order source webhooks (EasyOrders).

  POST /api/webhooks/easyorders
    - order created          → Order + OrderItems + initial status event (idempotent on external id)
    - order-status-update    → status change + appended status event

Authentication: the `secret` header must equal TL_EASYORDERS_WEBHOOK_SECRET, or,
when that is unset, hash to the value stored via PUT /api/settings/easyorders-webhook-secret.
If neither is configured, requests are accepted with a warning (dev only).

Orders are linked to touchpoints lazily, on first attribution read. A `vid`
in the payload (checkout custom field) ties the order to a tracked visitor;
without one the order has no candidate touchpoints.
"""

import datetime
import hmac
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.api.settings import EASYORDERS_SECRET_KEY, get_setting
from app.core.identifiers import hash_identifier, hash_secret
from app.core.linker import as_utc
from app.models.database import get_db
from app.models.tables import Order, OrderItem, OrderStatusEvent, Visitor

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

class EasyOrdersProduct(BaseModel):
    id: str
    name: str
    sku: str | None = None
    price: Decimal


class EasyOrdersVariant(BaseModel):
    id: str | None = None
    taager_code: str | None = None


class EasyOrdersCartItem(BaseModel):
    id: str
    product_id: str
    variant_id: str | None = None
    price: Decimal
    quantity: int
    product: EasyOrdersProduct
    variant: EasyOrdersVariant | None = None


class EasyOrdersOrder(BaseModel):
    id: str
    created_at: datetime.datetime
    updated_at: datetime.datetime
    store_id: str
    cost: Decimal
    shipping_cost: Decimal
    total_cost: Decimal
    status: str
    full_name: str | None = None
    phone: str | None = None
    government: str | None = None
    address: str | None = None
    payment_method: str | None = None
    vid: str | None = None
    cart_items: list[EasyOrdersCartItem]


class EasyOrdersStatusUpdate(BaseModel):
    event_type: Literal["order-status-update"]
    order_id: str
    old_status: str | None = None
    new_status: str
    payment_ref_id: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _verify_webhook_secret(db: AsyncSession, provided: str | None) -> bool:
    """Constant-time compare against the env secret, else the dashboard-stored hash."""
    expected = get_settings().easyorders_webhook_secret
    if expected:
        if not provided:
            return False
        return hmac.compare_digest(provided.encode(), expected.encode())

    stored = await get_setting(db, EASYORDERS_SECRET_KEY)
    if stored is not None:
        if not provided:
            return False
        return hmac.compare_digest(hash_secret(provided), stored.value)

    logger.warning("easyorders_webhook_secret_not_configured")
    return True


async def _get_order_by_external_id(db: AsyncSession, external_id: str) -> Order | None:
    result = await db.execute(select(Order).where(Order.order_id == external_id))
    return result.scalar_one_or_none()


async def _get_visitor_id(db: AsyncSession, vid: str | None):
    if not vid:
        return None
    result = await db.execute(select(Visitor.id).where(Visitor.vid == vid))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def _handle_status_update(db: AsyncSession, data: EasyOrdersStatusUpdate) -> dict:
    order = await _get_order_by_external_id(db, data.order_id)
    if not order:
        logger.warning("easyorders_status_unknown_order", order_id=data.order_id)
        raise HTTPException(status_code=404, detail="Order not found.")

    order.status = data.new_status
    db.add(OrderStatusEvent(
        order_id=order.id,
        old_status=data.old_status,
        new_status=data.new_status,
        payment_ref_id=data.payment_ref_id,
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    ))
    await db.commit()

    logger.info(
        "easyorders_status_updated",
        order_id=data.order_id,
        old_status=data.old_status,
        new_status=data.new_status,
    )
    return {"status": "ok", "message": "Order status updated"}


async def _handle_order_created(db: AsyncSession, data: EasyOrdersOrder) -> dict:
    # --- Idempotency: EasyOrders retries deliveries ---
    existing = await _get_order_by_external_id(db, data.id)
    if existing:
        logger.info("easyorders_order_duplicate", order_id=data.id)
        return {"status": "duplicate", "order_id": str(existing.id)}

    visitor_id = await _get_visitor_id(db, data.vid)
    if data.vid and visitor_id is None:
        logger.info("easyorders_order_unknown_vid", order_id=data.id, vid=data.vid)

    created_at = as_utc(data.created_at)
    order = Order(
        order_id=data.id,
        visitor_id=visitor_id,
        store_id=data.store_id,
        total_cost=data.total_cost,
        shipping_cost=data.shipping_cost,
        currency="USD",
        status=data.status,
        customer_name=data.full_name,
        customer_phone=hash_identifier(data.phone) if data.phone else None,
        address=data.address,
        created_at=created_at,
        items=[
            OrderItem(
                product_id=item.product_id,
                variant_id=item.variant_id,
                sku=item.product.sku,
                price=item.price,
                quantity=item.quantity,
            )
            for item in data.cart_items
        ],
        status_events=[
            OrderStatusEvent(old_status=None, new_status=data.status, timestamp=created_at),
        ],
    )
    db.add(order)
    try:
        await db.commit()
    except IntegrityError:
        # concurrent delivery of the same order won the insert
        await db.rollback()
        existing = await _get_order_by_external_id(db, data.id)
        if existing is None:
            raise
        logger.info("easyorders_order_duplicate", order_id=data.id, concurrent=True)
        return {"status": "duplicate", "order_id": str(existing.id)}

    logger.info(
        "easyorders_order_created",
        order_id=data.id,
        total_cost=str(data.total_cost),
        has_visitor=visitor_id is not None,
        items=len(data.cart_items),
    )
    return {"status": "ok", "order_id": str(order.id)}


@router.post("/easyorders", status_code=200)
async def easyorders_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    if not await _verify_webhook_secret(db, request.headers.get("secret")):
        raise HTTPException(status_code=401, detail="Invalid webhook secret.")

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body.")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid webhook payload.")

    try:
        if body.get("event_type") == "order-status-update":
            return await _handle_status_update(db, EasyOrdersStatusUpdate.model_validate(body))
        return await _handle_order_created(db, EasyOrdersOrder.model_validate(body))
    except ValidationError as e:
        logger.warning("easyorders_invalid_payload", errors=e.error_count())
        details = e.errors(include_url=False, include_context=False, include_input=False)
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid webhook payload", "details": details},
        )
