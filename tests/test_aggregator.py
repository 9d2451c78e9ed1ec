"""Tests for revenue-by-dimension reports."""

import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.aggregator import (
    RevenueBucket,
    parse_date_bound,
    resolve_report_range,
    revenue_by_dimension,
)
from app.errors import ReportValidationError
from app.models.tables import Attribution

from conftest import ORDER_AT, UTC

DAY = datetime.timedelta(days=1)
START = ORDER_AT - 7 * DAY
END = ORDER_AT + 7 * DAY


def _by_key(rows, group_by="source"):
    return {row[group_by]: row for row in rows}


class TestDateBounds:
    def test_date_start_is_midnight(self):
        assert parse_date_bound("2026-03-01") == datetime.datetime(2026, 3, 1, tzinfo=UTC)

    def test_date_end_covers_whole_day(self):
        end = parse_date_bound("2026-03-31", end=True)
        assert end.date() == datetime.date(2026, 3, 31)
        assert end.hour == 23 and end.minute == 59

    def test_datetime_with_z_suffix(self):
        assert parse_date_bound("2026-03-01T10:30:00Z") == datetime.datetime(2026, 3, 1, 10, 30, tzinfo=UTC)

    def test_offset_converted_to_utc(self):
        parsed = parse_date_bound("2026-03-01T12:00:00+02:00")
        assert parsed == datetime.datetime(2026, 3, 1, 10, 0, tzinfo=UTC)

    @pytest.mark.parametrize("bad", ["", "yesterday", "2026-13-01", None])
    def test_invalid(self, bad):
        with pytest.raises(ReportValidationError):
            parse_date_bound(bad)

    def test_default_range_is_trailing_window(self):
        start, end = resolve_report_range(default_days=30, now=ORDER_AT)
        assert end == ORDER_AT
        assert start == ORDER_AT - 30 * DAY


class TestRevenueBucket:
    def test_aov_tracks_revenue_and_count(self):
        bucket = RevenueBucket(key="google")
        bucket.add(Decimal("100.00"))
        bucket.add(Decimal("50.00"))
        assert bucket.revenue == Decimal("150.00")
        assert bucket.orders == 2
        assert bucket.aov == Decimal("75")

    def test_aov_not_rounded(self):
        bucket = RevenueBucket(key="x")
        for amount in ("10", "10", "10.01"):
            bucket.add(Decimal(amount))
        assert bucket.aov == Decimal("30.01") / 3


class TestValidation:
    @pytest.mark.parametrize("model,group_by", [
        ("linear", "source"),
        ("last_touch", "country"),
        ("", "source"),
    ])
    async def test_bad_params_rejected(self, model, group_by):
        # no session needed: validation happens before any query
        with pytest.raises(ReportValidationError):
            await revenue_by_dimension(None, START, END, model, group_by)

    async def test_inverted_range_rejected(self):
        with pytest.raises(ReportValidationError):
            await revenue_by_dimension(None, END, START, "last_touch", "source")

    async def test_single_instant_range_allowed(self, db):
        assert await revenue_by_dimension(db, ORDER_AT, ORDER_AT, "last_touch", "source") == []


class TestRevenueByDimension:
    async def test_journey_scenario(self, db, seed):
        # facebook → google → direct, then a 100.00 order
        visitor = await seed.visitor()
        await seed.touchpoint(visitor, ORDER_AT - 3 * DAY, utm_source="facebook", utm_medium="paid")
        await seed.touchpoint(visitor, ORDER_AT - 2 * DAY, utm_source="google", utm_medium="cpc")
        await seed.touchpoint(visitor, ORDER_AT - DAY, referrer="")
        await seed.order(visitor, total="100.00")

        last = await revenue_by_dimension(db, START, END, "last_touch", "source")
        first = await revenue_by_dimension(db, START, END, "first_touch", "source")

        assert last == [{"source": "google", "revenue": Decimal("100.00"), "orders": 1, "aov": Decimal("100.00")}]
        assert first[0]["source"] == "facebook"

    async def test_links_lazily(self, db, seed):
        visitor = await seed.visitor()
        await seed.touchpoint(visitor, ORDER_AT - DAY, utm_source="tiktok")
        await seed.order(visitor)

        await revenue_by_dimension(db, START, END, "last_touch", "source")

        count = (await db.execute(select(func.count()).select_from(Attribution))).scalar_one()
        assert count == 2

    async def test_revenue_conserved_across_buckets(self, db, seed):
        totals = ["120.50", "80.25", "42.00", "9.99"]
        sources = ["facebook", "google", "facebook", None]
        for total, source in zip(totals, sources):
            visitor = await seed.visitor()
            if source:
                await seed.touchpoint(visitor, ORDER_AT - DAY, utm_source=source)
            await seed.order(visitor, total=total)

        rows = await revenue_by_dimension(db, START, END, "last_touch", "source")

        assert sum(r["revenue"] for r in rows) == sum(Decimal(t) for t in totals)
        assert sum(r["orders"] for r in rows) == len(totals)
        by_key = _by_key(rows)
        assert by_key["facebook"]["revenue"] == Decimal("162.50")
        assert by_key["facebook"]["orders"] == 2
        assert by_key["facebook"]["aov"] == Decimal("81.25")
        assert by_key["direct"]["revenue"] == Decimal("9.99")

    async def test_sorted_by_revenue_descending(self, db, seed):
        for source, total in [("small", "10.00"), ("big", "500.00"), ("mid", "60.00")]:
            visitor = await seed.visitor()
            await seed.touchpoint(visitor, ORDER_AT - DAY, utm_source=source)
            await seed.order(visitor, total=total)

        rows = await revenue_by_dimension(db, START, END, "last_touch", "source")

        assert [r["source"] for r in rows] == ["big", "mid", "small"]

    async def test_orders_without_visitor_are_direct(self, db, seed):
        await seed.order(visitor=None, total="33.00")

        rows = await revenue_by_dimension(db, START, END, "first_touch", "campaign")

        assert rows == [{"campaign": "direct", "revenue": Decimal("33.00"), "orders": 1, "aov": Decimal("33.00")}]

    async def test_status_filter(self, db, seed):
        visitor = await seed.visitor()
        await seed.touchpoint(visitor, ORDER_AT - DAY, utm_source="google")
        await seed.order(visitor, total="100.00", status="confirmed")
        await seed.order(visitor, total="40.00", status="cancelled")

        confirmed = await revenue_by_dimension(db, START, END, "last_touch", "source", "confirmed")
        everything = await revenue_by_dimension(db, START, END, "last_touch", "source")

        assert confirmed[0]["revenue"] == Decimal("100.00")
        assert everything[0]["revenue"] == Decimal("140.00")

    async def test_orders_outside_range_excluded(self, db, seed):
        visitor = await seed.visitor()
        await seed.touchpoint(visitor, ORDER_AT - DAY, utm_source="google")
        await seed.order(visitor, total="10.00")
        await seed.order(visitor, at=ORDER_AT + 30 * DAY, total="999.00")

        rows = await revenue_by_dimension(db, START, END, "last_touch", "source")

        assert rows[0]["revenue"] == Decimal("10.00")

    async def test_source_medium_grouping(self, db, seed):
        visitor = await seed.visitor()
        await seed.touchpoint(visitor, ORDER_AT - DAY, utm_source="google", utm_medium="cpc")
        await seed.order(visitor, total="25.00")

        rows = await revenue_by_dimension(db, START, END, "last_touch", "source_medium")

        assert rows[0]["source_medium"] == "google/cpc"

    async def test_assisted_uses_earliest_assisting_touchpoint(self, db, seed):
        visitor = await seed.visitor()
        await seed.touchpoint(visitor, ORDER_AT - 4 * DAY, utm_source="first")
        await seed.touchpoint(visitor, ORDER_AT - 3 * DAY, utm_source="assist-a")
        await seed.touchpoint(visitor, ORDER_AT - 2 * DAY, utm_source="assist-b")
        await seed.touchpoint(visitor, ORDER_AT - DAY, utm_source="last")
        await seed.order(visitor, total="80.00")

        rows = await revenue_by_dimension(db, START, END, "assisted", "source")

        # each order is counted once, in one bucket
        assert rows == [{"source": "assist-a", "revenue": Decimal("80.00"), "orders": 1, "aov": Decimal("80.00")}]

    async def test_assisted_without_interior_touchpoints_is_direct(self, db, seed):
        visitor = await seed.visitor()
        await seed.touchpoint(visitor, ORDER_AT - DAY, utm_source="google")
        await seed.order(visitor, total="15.00")

        rows = await revenue_by_dimension(db, START, END, "assisted", "source")

        assert rows[0]["source"] == "direct"
