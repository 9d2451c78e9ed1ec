"""
Order → touchpoint linker.

For one order, pick the visitor's touchpoints inside the attribution window,
drop direct traffic, and write Attribution rows:

  T = [t0 ... tN]  (non-direct, ascending by timestamp)
    t0        → first_touch
    tN        → last_touch   (same touchpoint as t0 when N == 0)
    t1..tN-1  → assisted     (one row each)

  time_to_purchase = floor(order.created_at - touchpoint.timestamp) in seconds

Linking is lazy and one-shot: an order that already has rows is returned
as-is unless the caller forces a re-link. Orders without a visitor_id have
no candidate touchpoints (no identity resolution by phone/email).

Concurrency: the order row is locked for the duration of the check-then-write,
and rows are inserted with ON CONFLICT DO NOTHING against
(order_id, model, touchpoint_id), so two racing linkers cannot double-write.
The whole link commits or rolls back as one transaction.
"""

import datetime
import math
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from app.core.touchpoints import ASSISTED, CLICK_ID_PARAMS, FIRST_TOUCH, LAST_TOUCH, is_direct_touchpoint
from app.errors import OrderNotFoundError, StorageError
from app.models.tables import Attribution, Order, Touchpoint

import structlog

logger = structlog.get_logger()

DEFAULT_ATTRIBUTION_WINDOW_DAYS = 30

_CONFLICT_COLUMNS = ["order_id", "model", "touchpoint_id"]


def as_utc(value: datetime.datetime) -> datetime.datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def time_to_purchase(order_created_at: datetime.datetime, touch_at: datetime.datetime) -> int:
    """Whole seconds from the touchpoint to the order, floored."""
    return math.floor((as_utc(order_created_at) - as_utc(touch_at)).total_seconds())


def attribution_plan(touchpoints: list) -> list[tuple[object, str]]:
    """(touchpoint, model) pairs for an ascending list of candidate touchpoints.

    Direct touchpoints are dropped first. One attributed touchpoint yields two
    pairs (first_touch + last_touch on the same touchpoint).
    """
    attributed = [tp for tp in touchpoints if not is_direct_touchpoint(tp)]
    if not attributed:
        return []

    plan = [(attributed[0], FIRST_TOUCH), (attributed[-1], LAST_TOUCH)]
    plan.extend((tp, ASSISTED) for tp in attributed[1:-1])
    return plan


async def order_attributions(db: AsyncSession, order_id: UUID) -> list[Attribution]:
    """All attribution rows for an order, touchpoint ascending."""
    stmt = (
        select(Attribution)
        .join(Attribution.touchpoint)
        .options(contains_eager(Attribution.touchpoint))
        .where(Attribution.order_id == order_id)
        .order_by(Touchpoint.timestamp.asc(), Attribution.model.asc(), Attribution.id.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().unique().all())


def _attributable_clause():
    """SQL form of the direct rule: some of source / medium / click id / referrer is non-empty."""
    columns = ["utm_source", "utm_medium", *CLICK_ID_PARAMS, "referrer"]
    return or_(*(
        and_(getattr(Touchpoint, name).is_not(None), getattr(Touchpoint, name) != "")
        for name in columns
    ))


async def _candidate_touchpoints(
    db: AsyncSession,
    order: Order,
    window_days: int,
    max_touchpoints: int | None,
) -> list[Touchpoint]:
    if order.visitor_id is None:
        # no identity resolution by phone or email
        return []

    window_end = order.created_at
    window_start = window_end - datetime.timedelta(days=window_days)

    # Direct traffic is excluded in the query so the cap only counts attributable
    # touchpoints. Newest first so a cap keeps the ones closest to the purchase.
    stmt = (
        select(Touchpoint)
        .where(
            Touchpoint.visitor_id == order.visitor_id,
            Touchpoint.timestamp >= window_start,
            Touchpoint.timestamp <= window_end,
            _attributable_clause(),
        )
        .order_by(Touchpoint.timestamp.desc(), Touchpoint.id.desc())
    )
    if max_touchpoints:
        stmt = stmt.limit(max_touchpoints)

    result = await db.execute(stmt)
    touchpoints = list(result.scalars().all())
    touchpoints.reverse()
    return touchpoints


def _insert_ignore_stmt(dialect_name: str, rows: list[dict]):
    """Dialect-native INSERT ... ON CONFLICT DO NOTHING, or None if unsupported."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        return None
    return insert(Attribution).values(rows).on_conflict_do_nothing(index_elements=_CONFLICT_COLUMNS)


async def _write_attributions(db: AsyncSession, rows: list[dict]) -> None:
    stmt = _insert_ignore_stmt(db.get_bind().dialect.name, rows)
    if stmt is None:
        db.add_all(Attribution(**row) for row in rows)
        await db.flush()
        return
    await db.execute(stmt)


async def link_order(
    db: AsyncSession,
    order_id: UUID,
    window_days: int = DEFAULT_ATTRIBUTION_WINDOW_DAYS,
    *,
    force: bool = False,
    max_touchpoints: int | None = None,
) -> list[Attribution]:
    """Attribute one order to its visitor's touchpoints.

    Returns the order's Attribution rows (existing ones when already linked).
    Raises OrderNotFoundError for an unknown id, StorageError if the database
    fails; on failure nothing is committed.
    """
    try:
        result = await db.execute(
            select(Order).where(Order.id == order_id).with_for_update()
        )
        order = result.scalar_one_or_none()
        if order is None:
            await db.rollback()
            raise OrderNotFoundError(order_id)

        existing = await order_attributions(db, order.id)
        if existing and not force:
            await db.commit()
            logger.debug("order_link_skipped", order_id=str(order.id), attributions=len(existing))
            return existing

        if existing:
            await db.execute(delete(Attribution).where(Attribution.order_id == order.id))
            logger.info("order_relink", order_id=str(order.id), replaced=len(existing))

        touchpoints = await _candidate_touchpoints(db, order, window_days, max_touchpoints)
        plan = attribution_plan(touchpoints)

        attributions = []
        if plan:
            rows = [
                {
                    "id": uuid4(),
                    "order_id": order.id,
                    "touchpoint_id": tp.id,
                    "model": model,
                    "time_to_purchase": time_to_purchase(order.created_at, tp.timestamp),
                }
                for tp, model in plan
            ]
            await _write_attributions(db, rows)
            attributions = await order_attributions(db, order.id)

        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("order_link_failed", order_id=str(order_id), error=str(e))
        raise StorageError(f"Failed to link order {order_id}.", order_id=str(order_id)) from e

    if not attributions:
        logger.info(
            "order_link_no_touchpoints",
            order_id=str(order.id),
            has_visitor=order.visitor_id is not None,
            candidates=len(touchpoints),
        )
        return []

    logger.info(
        "order_linked",
        order_id=str(order.id),
        touchpoints=len(touchpoints),
        attributions=len(attributions),
        window_days=window_days,
    )
    return attributions
