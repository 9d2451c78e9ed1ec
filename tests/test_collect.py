"""Tests for touchpoint collection and identifier helpers."""

import time

from sqlalchemy import func, select

from app.config import get_settings
from app.core.identifiers import generate_visitor_id, hash_identifier, parse_device
from app.middleware import rate_limit
from app.models.tables import Touchpoint, TrackingSession, Visitor

URL = "/api/collect"
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


async def _touchpoints(session_maker) -> list[Touchpoint]:
    async with session_maker() as session:
        result = await session.execute(select(Touchpoint).order_by(Touchpoint.timestamp))
        return list(result.scalars().all())


class TestIdentifiers:
    def test_visitor_ids_are_random_hex(self):
        a, b = generate_visitor_id(), generate_visitor_id()
        assert a != b
        assert len(a) == 32
        int(a, 16)

    def test_hash_normalizes(self):
        assert hash_identifier("  User@Example.com ") == hash_identifier("user@example.com")
        assert len(hash_identifier("x")) == 64

    def test_parse_device_mobile(self):
        device = parse_device(IPHONE_UA)
        assert device.device_type == "mobile"
        assert device.os == "iOS"

    def test_parse_device_missing(self):
        device = parse_device(None)
        assert (device.device_type, device.browser, device.os) == ("unknown", "Unknown", "Unknown")


class TestCollect:
    async def test_new_visitor_minted(self, client, session_maker):
        resp = await client.post(URL, json={"eventType": "page_view"})

        assert resp.status_code == 200
        body = resp.json()
        assert len(body["vid"]) == 32
        assert len(body["sid"]) == 32

        async with session_maker() as session:
            visitors = (await session.execute(select(func.count()).select_from(Visitor))).scalar_one()
        assert visitors == 1

    async def test_landing_url_fills_marketing_fields(self, client, session_maker):
        await client.post(URL, json={
            "vid": "v-1",
            "eventType": "page_view",
            "utm_source": "newsletter",
            "landing_url": "https://shop.example/?utm_source=facebook&utm_medium=paid&fbclid=fb-9",
            "user_agent": IPHONE_UA,
        })

        (tp,) = await _touchpoints(session_maker)
        # explicit payload value wins over the URL
        assert tp.utm_source == "newsletter"
        assert tp.utm_medium == "paid"
        assert tp.fbclid == "fb-9"
        assert tp.device_type == "mobile"

    async def test_ip_is_hashed(self, client, session_maker):
        await client.post(
            URL,
            json={"vid": "v-1", "eventType": "page_view"},
            headers={"x-forwarded-for": "203.0.113.7, 10.0.0.1"},
        )

        (tp,) = await _touchpoints(session_maker)
        assert tp.ip_address == hash_identifier("203.0.113.7")

    async def test_same_vid_and_sid_reuse_rows(self, client, session_maker):
        first = (await client.post(URL, json={"vid": "v-1", "sid": "s-1", "eventType": "page_view"})).json()
        second = (await client.post(URL, json={"vid": "v-1", "sid": "s-1", "eventType": "add_to_cart"})).json()

        assert first["vid"] == second["vid"] == "v-1"
        tps = await _touchpoints(session_maker)
        assert len(tps) == 2
        assert tps[0].visitor_id == tps[1].visitor_id
        assert tps[0].session_id == tps[1].session_id

    async def test_session_start_opens_new_session(self, client, session_maker):
        await client.post(URL, json={"vid": "v-1", "sid": "s-1", "eventType": "page_view"})
        await client.post(URL, json={"vid": "v-1", "sid": "s-1", "eventType": "session_start"})

        async with session_maker() as session:
            sessions = (await session.execute(select(func.count()).select_from(TrackingSession))).scalar_one()
        assert sessions == 2

    async def test_unknown_event_type_422(self, client):
        resp = await client.post(URL, json={"eventType": "scroll"})
        assert resp.status_code == 422

    async def test_rate_limited(self, client, monkeypatch, request):
        monkeypatch.setenv("TL_RATE_LIMIT_COLLECT_PER_MINUTE", "2")
        get_settings.cache_clear()
        request.addfinalizer(get_settings.cache_clear)

        codes = [
            (await client.post(URL, json={"vid": "v-1", "eventType": "page_view"})).status_code
            for _ in range(3)
        ]

        assert codes == [200, 200, 429]


class TestRateLimitStore:
    def test_expired_clients_are_swept(self, monkeypatch):
        monkeypatch.setattr(rate_limit, "_SWEEP_THRESHOLD", 2)
        monkeypatch.setattr(rate_limit, "_memory_store", {
            "collect:198.51.100.1": [time.time() - 600],
            "collect:198.51.100.2": [],
            "collect:198.51.100.3": [time.time()],
        })

        allowed, _ = rate_limit._sliding_window_check("collect:198.51.100.4", limit=5)

        assert allowed is True
        assert set(rate_limit._memory_store) == {"collect:198.51.100.3", "collect:198.51.100.4"}

    def test_small_store_left_alone(self, monkeypatch):
        monkeypatch.setattr(rate_limit, "_memory_store", {"collect:198.51.100.1": []})

        rate_limit._sliding_window_check("collect:198.51.100.2", limit=5)

        assert "collect:198.51.100.1" in rate_limit._memory_store
