"""
Settings API: dashboard-managed integration secrets.

  GET /api/settings/status                     → is the EasyOrders secret configured, and from where
  PUT /api/settings/easyorders-webhook-secret  → store the secret (SHA-256 hash only)

An env secret (TL_EASYORDERS_WEBHOOK_SECRET) always takes precedence over the
stored hash. Both endpoints require the admin API key.
"""

import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.identifiers import hash_secret
from app.middleware.auth import require_admin_key
from app.models.database import get_db
from app.models.tables import Setting

import structlog

logger = structlog.get_logger()
router = APIRouter(
    prefix="/api/settings",
    tags=["settings"],
    dependencies=[Depends(require_admin_key)],
)

EASYORDERS_SECRET_KEY = "easyorders_webhook_secret_hash"


class WebhookSecretPayload(BaseModel):
    secret: str = Field(min_length=6)


async def get_setting(db: AsyncSession, key: str) -> Setting | None:
    return await db.get(Setting, key)


@router.get("/status")
async def settings_status(db: AsyncSession = Depends(get_db)):
    env_secret = get_settings().easyorders_webhook_secret
    stored = await get_setting(db, EASYORDERS_SECRET_KEY)

    if env_secret:
        source = "env"
    elif stored is not None:
        source = "dashboard"
    else:
        source = "none"

    return {
        "easyorders": {
            "configured": source != "none",
            "source": source,
            "updated_at": stored.updated_at.isoformat() if stored is not None else None,
        },
    }


@router.put("/easyorders-webhook-secret")
async def set_easyorders_webhook_secret(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body.")

    try:
        payload = WebhookSecretPayload.model_validate(body)
    except ValidationError as e:
        details = e.errors(include_url=False, include_context=False, include_input=False)
        raise HTTPException(status_code=400, detail={"error": "Invalid payload", "details": details})

    now = datetime.datetime.now(datetime.timezone.utc)
    setting = await get_setting(db, EASYORDERS_SECRET_KEY)
    if setting is None:
        setting = Setting(key=EASYORDERS_SECRET_KEY, value=hash_secret(payload.secret), updated_at=now)
        db.add(setting)
    else:
        setting.value = hash_secret(payload.secret)
        setting.updated_at = now
    await db.commit()

    logger.info("easyorders_webhook_secret_updated", env_override=bool(get_settings().easyorders_webhook_secret))
    return {"status": "ok"}
