"""Tests for dashboard-managed settings: secret status and storage."""

from sqlalchemy import select

from app.api.settings import EASYORDERS_SECRET_KEY
from app.core.identifiers import hash_secret
from app.models.tables import Setting

from conftest import ADMIN_HEADERS

STATUS_URL = "/api/settings/status"
SECRET_URL = "/api/settings/easyorders-webhook-secret"


async def _stored_value(session_maker) -> str | None:
    async with session_maker() as session:
        result = await session.execute(select(Setting.value).where(Setting.key == EASYORDERS_SECRET_KEY))
        return result.scalar_one_or_none()


class TestSettingsAuth:
    async def test_requires_admin_key(self, client):
        assert (await client.get(STATUS_URL)).status_code == 401
        assert (await client.put(SECRET_URL, json={"secret": "abcdef"})).status_code == 401


class TestSettingsStatus:
    async def test_env_secret_reported(self, client):
        resp = await client.get(STATUS_URL, headers=ADMIN_HEADERS)

        assert resp.status_code == 200
        assert resp.json()["easyorders"] == {"configured": True, "source": "env", "updated_at": None}

    async def test_nothing_configured(self, client, no_env_webhook_secret):
        resp = await client.get(STATUS_URL, headers=ADMIN_HEADERS)

        assert resp.json()["easyorders"] == {"configured": False, "source": "none", "updated_at": None}

    async def test_dashboard_secret_reported(self, client, no_env_webhook_secret):
        await client.put(SECRET_URL, json={"secret": "shh-secret"}, headers=ADMIN_HEADERS)

        easyorders = (await client.get(STATUS_URL, headers=ADMIN_HEADERS)).json()["easyorders"]

        assert easyorders["configured"] is True
        assert easyorders["source"] == "dashboard"
        assert easyorders["updated_at"] is not None


class TestSetWebhookSecret:
    async def test_stores_hash_not_plaintext(self, client, session_maker):
        resp = await client.put(SECRET_URL, json={"secret": "Sup3r-Secret"}, headers=ADMIN_HEADERS)

        assert resp.status_code == 200
        stored = await _stored_value(session_maker)
        assert stored == hash_secret("Sup3r-Secret")
        assert "Sup3r-Secret" not in stored

    async def test_second_put_replaces_hash(self, client, session_maker):
        await client.put(SECRET_URL, json={"secret": "first-secret"}, headers=ADMIN_HEADERS)
        await client.put(SECRET_URL, json={"secret": "second-secret"}, headers=ADMIN_HEADERS)

        assert await _stored_value(session_maker) == hash_secret("second-secret")
        async with session_maker() as session:
            rows = (await session.execute(select(Setting))).scalars().all()
        assert len(rows) == 1

    async def test_short_secret_400(self, client, session_maker):
        resp = await client.put(SECRET_URL, json={"secret": "abc"}, headers=ADMIN_HEADERS)

        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "Invalid payload"
        assert await _stored_value(session_maker) is None

    async def test_non_json_400(self, client):
        resp = await client.put(
            SECRET_URL,
            content=b"secret=abcdef",
            headers={**ADMIN_HEADERS, "content-type": "application/json"},
        )
        assert resp.status_code == 400
