"""Pytest configuration."""

import datetime
import os
from decimal import Decimal
from uuid import uuid4

# Ensure test environment
os.environ.setdefault("TL_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TL_ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("TL_EASYORDERS_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("TL_DEBUG", "true")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.models.tables import Base, Order, Touchpoint, Visitor

UTC = datetime.timezone.utc
ORDER_AT = datetime.datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory SQLite per test. StaticPool keeps the single connection alive."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


class Seeder:
    """Writes visitors / touchpoints / orders straight to the test database."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def visitor(self, vid: str | None = None) -> Visitor:
        visitor = Visitor(vid=vid or uuid4().hex)
        self.db.add(visitor)
        await self.db.commit()
        return visitor

    async def touchpoint(self, visitor: Visitor, at: datetime.datetime, **fields) -> Touchpoint:
        fields.setdefault("event_type", "page_view")
        touchpoint = Touchpoint(visitor_id=visitor.id, timestamp=at, **fields)
        self.db.add(touchpoint)
        await self.db.commit()
        return touchpoint

    async def order(
        self,
        visitor: Visitor | None = None,
        at: datetime.datetime = ORDER_AT,
        total: str = "100.00",
        status: str = "confirmed",
        external_id: str | None = None,
    ) -> Order:
        order = Order(
            order_id=external_id or f"eo-{uuid4().hex[:8]}",
            visitor_id=visitor.id if visitor else None,
            total_cost=Decimal(total),
            status=status,
            created_at=at,
        )
        self.db.add(order)
        await self.db.commit()
        return order


@pytest.fixture
def seed(db):
    return Seeder(db)


ADMIN_HEADERS = {"X-API-Key": "test-admin-key"}


@pytest_asyncio.fixture
async def client(session_maker):
    """ASGI client against the app, with get_db bound to the test database."""
    from httpx import ASGITransport, AsyncClient

    from app.main import app
    from app.middleware import rate_limit
    from app.models.database import get_db

    async def _get_test_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    rate_limit._memory_store.clear()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def no_env_webhook_secret(monkeypatch):
    """Unset TL_EASYORDERS_WEBHOOK_SECRET so the dashboard-stored hash applies."""
    from app.config import get_settings

    monkeypatch.setenv("TL_EASYORDERS_WEBHOOK_SECRET", "")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
