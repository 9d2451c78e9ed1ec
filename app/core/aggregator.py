"""
Revenue-by-dimension reports.

  1. validate model / groupBy / date range (before touching the database)
  2. link every order in range that has no rows for the requested model
  3. re-read orders + their first attribution for the model
  4. bucket each order by its touchpoint's dimension ("direct" if unattributed)
  5. revenue / orders / aov per bucket as Decimal, never rounded here

"First attribution" = the row whose touchpoint is earliest (ties by row id).
For first_touch / last_touch there is exactly one row per order; for assisted
this picks the earliest assisting touchpoint.
"""

import datetime
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.linker import DEFAULT_ATTRIBUTION_WINDOW_DAYS, as_utc, link_order
from app.core.touchpoints import ATTRIBUTION_MODELS, DIRECT, GROUP_BY_DIMENSIONS, grouping_key
from app.errors import ReportValidationError, StorageError
from app.models.tables import Attribution, Order, Touchpoint

import structlog

logger = structlog.get_logger()

_ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------

def parse_date_bound(value, *, end: bool = False) -> datetime.datetime:
    """ISO date/datetime → aware UTC datetime.

    A bare date as the END bound covers that whole day, so
    ?startDate=2026-03-01&endDate=2026-03-31 includes orders on the 31st.
    """
    if isinstance(value, datetime.datetime):
        return as_utc(value)
    if isinstance(value, datetime.date):
        clock = datetime.time.max if end else datetime.time.min
        return datetime.datetime.combine(value, clock, tzinfo=datetime.timezone.utc)
    if not isinstance(value, str) or not value.strip():
        raise ReportValidationError(f"Invalid date: {value!r}.", value=value)

    text = value.strip()
    try:
        if len(text) == 10:
            return parse_date_bound(datetime.date.fromisoformat(text), end=end)
        return as_utc(datetime.datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        raise ReportValidationError(f"Invalid date: {value!r}. Use ISO-8601.", value=value)


def resolve_report_range(
    start=None,
    end=None,
    default_days: int = 30,
    now: datetime.datetime | None = None,
) -> tuple[datetime.datetime, datetime.datetime]:
    """Parse optional bounds; missing ones default to the trailing `default_days`."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    end_at = parse_date_bound(end, end=True) if end is not None else now
    start_at = (
        parse_date_bound(start)
        if start is not None
        else now - datetime.timedelta(days=default_days)
    )
    return start_at, end_at


def validate_report_params(
    start: datetime.datetime,
    end: datetime.datetime,
    model: str,
    group_by: str,
) -> None:
    if model not in ATTRIBUTION_MODELS:
        raise ReportValidationError(
            f"Unknown attribution model {model!r}. Expected one of: {', '.join(ATTRIBUTION_MODELS)}.",
            model=model,
        )
    if group_by not in GROUP_BY_DIMENSIONS:
        raise ReportValidationError(
            f"Unknown groupBy {group_by!r}. Expected one of: {', '.join(GROUP_BY_DIMENSIONS)}.",
            group_by=group_by,
        )
    if as_utc(start) > as_utc(end):
        raise ReportValidationError(
            "startDate must be on or before endDate.",
            start=start.isoformat(),
            end=end.isoformat(),
        )


# ---------------------------------------------------------------------------
# Accumulation
# ---------------------------------------------------------------------------

@dataclass
class RevenueBucket:
    key: str
    revenue: Decimal = field(default=_ZERO)
    orders: int = 0
    aov: Decimal = field(default=_ZERO)

    def add(self, amount) -> None:
        if not isinstance(amount, Decimal):
            amount = Decimal(str(amount or 0))
        self.revenue += amount
        self.orders += 1
        self.aov = self.revenue / self.orders if self.orders else _ZERO

    def as_row(self, group_by: str) -> dict:
        return {group_by: self.key, "revenue": self.revenue, "orders": self.orders, "aov": self.aov}


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _order_filters(start, end, status):
    conditions = [Order.created_at >= start, Order.created_at <= end]
    if status:
        conditions.append(Order.status == status)
    return conditions


async def _unlinked_order_ids(db: AsyncSession, start, end, model: str, status: str | None) -> list:
    has_rows = exists().where(Attribution.order_id == Order.id, Attribution.model == model)
    result = await db.execute(
        select(Order.id)
        .where(*_order_filters(start, end, status), ~has_rows)
        .order_by(Order.created_at.asc())
    )
    return list(result.scalars().all())


async def _orders_in_range(db: AsyncSession, start, end, status: str | None) -> list:
    result = await db.execute(
        select(Order.id, Order.total_cost)
        .where(*_order_filters(start, end, status))
        .order_by(Order.created_at.asc())
    )
    return result.all()


async def _first_touchpoints(db: AsyncSession, start, end, model: str, status: str | None) -> dict:
    """order id → touchpoint of its first attribution row for `model`."""
    result = await db.execute(
        select(Attribution.order_id, Touchpoint)
        .join(Touchpoint, Attribution.touchpoint_id == Touchpoint.id)
        .join(Order, Attribution.order_id == Order.id)
        .where(Attribution.model == model, *_order_filters(start, end, status))
        .order_by(Attribution.order_id, Touchpoint.timestamp.asc(), Attribution.id.asc())
    )
    first = {}
    for order_id, touchpoint in result.all():
        first.setdefault(order_id, touchpoint)
    return first


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def revenue_by_dimension(
    db: AsyncSession,
    start: datetime.datetime,
    end: datetime.datetime,
    model: str,
    group_by: str,
    status: str | None = None,
    *,
    window_days: int = DEFAULT_ATTRIBUTION_WINDOW_DAYS,
    max_touchpoints: int | None = None,
) -> list[dict]:
    """Revenue, order count and AOV per `group_by` bucket for orders in [start, end].

    Each row is {<group_by>: key, "revenue": Decimal, "orders": int, "aov": Decimal},
    sorted by revenue descending.
    """
    validate_report_params(start, end, model, group_by)

    try:
        unlinked = await _unlinked_order_ids(db, start, end, model, status)
    except SQLAlchemyError as e:
        raise StorageError("Failed to load orders for revenue report.") from e

    for order_id in unlinked:
        await link_order(db, order_id, window_days, max_touchpoints=max_touchpoints)

    try:
        orders = await _orders_in_range(db, start, end, status)
        first_touchpoints = await _first_touchpoints(db, start, end, model, status)
    except SQLAlchemyError as e:
        raise StorageError("Failed to load attributions for revenue report.") from e

    buckets: dict[str, RevenueBucket] = {}
    for order_id, total_cost in orders:
        touchpoint = first_touchpoints.get(order_id)
        key = grouping_key(touchpoint, group_by) if touchpoint is not None else DIRECT
        if key not in buckets:
            buckets[key] = RevenueBucket(key=key)
        buckets[key].add(total_cost)

    logger.info(
        "revenue_report_built",
        model=model,
        group_by=group_by,
        status=status,
        orders=len(orders),
        linked_now=len(unlinked),
        buckets=len(buckets),
    )

    ranked = sorted(buckets.values(), key=lambda b: b.revenue, reverse=True)
    return [bucket.as_row(group_by) for bucket in ranked]
