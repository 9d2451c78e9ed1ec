"""
Attribution API — revenue reports, order attribution paths, manual re-link.

All endpoints require the admin API key (X-API-Key).
Money is rounded to 2 decimals here, at presentation; the engine never rounds.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import get_settings
from app.core.aggregator import parse_date_bound, resolve_report_range, revenue_by_dimension
from app.core.linker import link_order
from app.core.touchpoints import LAST_TOUCH
from app.errors import AttributionError, OrderNotFoundError, ReportValidationError
from app.middleware.auth import require_admin_key
from app.models.database import get_db
from app.models.tables import Attribution, Order, Touchpoint

import structlog

logger = structlog.get_logger()
router = APIRouter(
    prefix="/api/attribution",
    tags=["attribution"],
    dependencies=[Depends(require_admin_key)],
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _http_error(e: AttributionError) -> HTTPException:
    """Map engine errors to HTTP. Storage failures are 503 so callers know to retry."""
    if isinstance(e, OrderNotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, ReportValidationError):
        return HTTPException(status_code=400, detail=e.message)
    return HTTPException(status_code=503, detail=f"{e.message} Retry the request.")


def _money(value) -> float | None:
    if value is None:
        return None
    return float(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _touchpoint_dict(tp: Touchpoint) -> dict:
    return {
        "id": str(tp.id),
        "event_type": tp.event_type,
        "utm_source": tp.utm_source,
        "utm_medium": tp.utm_medium,
        "utm_campaign": tp.utm_campaign,
        "utm_content": tp.utm_content,
        "utm_term": tp.utm_term,
        "fbclid": tp.fbclid,
        "ttclid": tp.ttclid,
        "gclid": tp.gclid,
        "wbraid": tp.wbraid,
        "gbraid": tp.gbraid,
        "msclkid": tp.msclkid,
        "sccid": tp.sccid,
        "referrer": tp.referrer,
        "landing_url": tp.landing_url,
        "device_type": tp.device_type,
        "timestamp": _iso(tp.timestamp),
    }


def _attribution_dict(attribution: Attribution) -> dict:
    return {
        "id": str(attribution.id),
        "model": attribution.model,
        "time_to_purchase": attribution.time_to_purchase,
        "touchpoint": _touchpoint_dict(attribution.touchpoint),
    }


def _order_summary(order: Order) -> dict:
    return {
        "id": str(order.id),
        "order_id": order.order_id,
        "visitor_id": str(order.visitor_id) if order.visitor_id else None,
        "total_cost": _money(order.total_cost),
        "shipping_cost": _money(order.shipping_cost),
        "currency": order.currency,
        "status": order.status,
        "created_at": _iso(order.created_at),
    }


# ---------------------------------------------------------------------------
# Revenue report
# ---------------------------------------------------------------------------

@router.get("/revenue")
async def revenue(
    db: AsyncSession = Depends(get_db),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    model: Optional[str] = None,
    group_by: Optional[str] = Query(None, alias="groupBy"),
    status: Optional[str] = None,
):
    """Revenue, orders and AOV grouped by source / medium / campaign / creative / source_medium."""
    settings = get_settings()
    model = model or settings.default_attribution_model
    group_by = group_by or settings.default_group_by

    try:
        start, end = resolve_report_range(start_date, end_date, settings.default_report_days)
        rows = await revenue_by_dimension(
            db,
            start,
            end,
            model,
            group_by,
            status,
            window_days=settings.attribution_window_days,
            max_touchpoints=settings.max_touchpoints_per_link,
        )
    except AttributionError as e:
        logger.warning("revenue_report_failed", error=e.message, **e.context)
        raise _http_error(e)

    return {
        "data": [
            {
                group_by: row[group_by],
                "revenue": _money(row["revenue"]),
                "orders": row["orders"],
                "aov": _money(row["aov"]),
            }
            for row in rows
        ],
        "model": model,
        "group_by": group_by,
        "start": start.isoformat(),
        "end": end.isoformat(),
    }


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@router.get("/orders/{order_id}")
async def order_detail(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Order with items, status history and its full attribution path. Links lazily."""
    settings = get_settings()

    result = await db.execute(
        select(Order)
        .options(selectinload(Order.items), selectinload(Order.status_events))
        .where(Order.id == order_id)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found.")

    try:
        attributions = await link_order(
            db,
            order.id,
            settings.attribution_window_days,
            max_touchpoints=settings.max_touchpoints_per_link,
        )
    except AttributionError as e:
        raise _http_error(e)

    status_events = sorted(order.status_events, key=lambda ev: ev.timestamp, reverse=True)

    return {
        **_order_summary(order),
        "store_id": order.store_id,
        "customer_name": order.customer_name,
        "items": [
            {
                "product_id": item.product_id,
                "variant_id": item.variant_id,
                "sku": item.sku,
                "price": _money(item.price),
                "quantity": item.quantity,
            }
            for item in order.items
        ],
        "status_events": [
            {
                "old_status": ev.old_status,
                "new_status": ev.new_status,
                "payment_ref_id": ev.payment_ref_id,
                "timestamp": _iso(ev.timestamp),
            }
            for ev in status_events
        ],
        "attributions": [_attribution_dict(a) for a in attributions],
    }


@router.get("/orders")
async def list_orders(
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    status: Optional[str] = None,
):
    """Paginated orders, newest first, each with its last-touch attribution (if linked)."""
    conditions = []
    try:
        if start_date:
            conditions.append(Order.created_at >= parse_date_bound(start_date))
        if end_date:
            conditions.append(Order.created_at <= parse_date_bound(end_date, end=True))
    except ReportValidationError as e:
        raise _http_error(e)
    if status:
        conditions.append(Order.status == status)

    try:
        total = (
            await db.execute(select(func.count(Order.id)).where(*conditions))
        ).scalar_one()

        offset = (page - 1) * limit
        orders = (
            await db.execute(
                select(Order)
                .where(*conditions)
                .order_by(Order.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
        ).scalars().all()

        last_touch = {}
        if orders:
            rows = await db.execute(
                select(Attribution.order_id, Touchpoint)
                .join(Touchpoint, Attribution.touchpoint_id == Touchpoint.id)
                .where(
                    Attribution.order_id.in_([o.id for o in orders]),
                    Attribution.model == LAST_TOUCH,
                )
                .order_by(Attribution.order_id, Touchpoint.timestamp.asc(), Attribution.id.asc())
            )
            for oid, touchpoint in rows.all():
                last_touch.setdefault(oid, touchpoint)
    except SQLAlchemyError as e:
        logger.error("orders_list_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Failed to load orders. Retry the request.")

    return {
        "data": [
            {
                **_order_summary(order),
                "last_touch": _touchpoint_dict(last_touch[order.id]) if order.id in last_touch else None,
            }
            for order in orders
        ],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": -(-total // limit),
        },
    }


# ---------------------------------------------------------------------------
# Manual linking
# ---------------------------------------------------------------------------

@router.post("/link/{order_id}")
async def link(
    order_id: UUID,
    force: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """Link an order now. `force=true` discards existing rows and re-attributes."""
    settings = get_settings()
    try:
        attributions = await link_order(
            db,
            order_id,
            settings.attribution_window_days,
            force=force,
            max_touchpoints=settings.max_touchpoints_per_link,
        )
    except AttributionError as e:
        logger.warning("manual_link_failed", error=e.message, **e.context)
        raise _http_error(e)

    logger.info("manual_link", order_id=str(order_id), force=force, attributions=len(attributions))
    return {"order_id": str(order_id), "attributions": len(attributions)}
