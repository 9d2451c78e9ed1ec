"""
Touchpoint collection — receives events from the browser tracker.

  - Visitor resolved by `vid` (created on first sight, or minted if absent)
  - Session resolved by `sid` for that visitor; `session_start` always opens a new one
  - UTM params / click ids taken from the payload, falling back to the landing URL
  - IP hashed before storage; device parsed from the User-Agent
  - Rate limited per client IP
"""

import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.identifiers import generate_session_id, generate_visitor_id, hash_identifier, parse_device
from app.core.touchpoints import CLICK_ID_PARAMS, UTM_PARAMS, parse_click_ids, parse_utm_params
from app.middleware.rate_limit import get_real_ip, rate_limit_collect
from app.models.database import get_db
from app.models.tables import Touchpoint, TrackingSession, Visitor

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/collect", tags=["collect"])


class CollectPayload(BaseModel):
    vid: str | None = None
    sid: str | None = None
    eventType: Literal["page_view", "session_start", "add_to_cart", "begin_checkout", "purchase"]

    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_content: str | None = None
    utm_term: str | None = None

    fbclid: str | None = None
    ttclid: str | None = None
    gclid: str | None = None
    wbraid: str | None = None
    gbraid: str | None = None
    msclkid: str | None = None
    sccid: str | None = None

    referrer: str | None = None
    landing_url: str | None = None
    current_url: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None


def _marketing_fields(payload: CollectPayload, landing_url: str | None) -> dict:
    """Explicit payload values win; the landing URL fills the gaps."""
    from_url = {**parse_utm_params(landing_url), **parse_click_ids(landing_url)}
    fields = {}
    for name in UTM_PARAMS + CLICK_ID_PARAMS:
        fields[name] = getattr(payload, name) or from_url.get(name)
    return fields


async def _resolve_visitor(db: AsyncSession, vid: str | None) -> Visitor:
    if vid:
        result = await db.execute(select(Visitor).where(Visitor.vid == vid))
        visitor = result.scalar_one_or_none()
        if visitor:
            return visitor

    visitor = Visitor(vid=vid or generate_visitor_id())
    db.add(visitor)
    await db.flush()
    return visitor


async def _resolve_session(db: AsyncSession, visitor: Visitor, sid: str | None, event_type: str) -> TrackingSession:
    session = None
    if sid and event_type != "session_start":
        result = await db.execute(
            select(TrackingSession).where(
                TrackingSession.sid == sid,
                TrackingSession.visitor_id == visitor.id,
            )
        )
        session = result.scalars().first()

    if session is None:
        session = TrackingSession(sid=sid or generate_session_id(), visitor_id=visitor.id)
        db.add(session)
        await db.flush()
    return session


@router.post("", status_code=200)
async def collect(
    payload: CollectPayload,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    rate_limit_collect(request)

    visitor = await _resolve_visitor(db, payload.vid)
    session = await _resolve_session(db, visitor, payload.sid, payload.eventType)

    user_agent = payload.user_agent or request.headers.get("user-agent", "")
    device = parse_device(user_agent)
    ip = payload.ip_address or get_real_ip(request)
    landing_url = payload.landing_url or payload.current_url

    touchpoint = Touchpoint(
        visitor_id=visitor.id,
        session_id=session.id,
        event_type=payload.eventType,
        referrer=payload.referrer or None,
        landing_url=landing_url,
        user_agent=user_agent or None,
        ip_address=hash_identifier(ip) if ip else None,
        device_type=device.device_type,
        browser=device.browser,
        os=device.os,
        timestamp=datetime.datetime.now(datetime.timezone.utc),
        **_marketing_fields(payload, landing_url),
    )
    db.add(touchpoint)
    await db.commit()

    logger.info(
        "touchpoint_collected",
        vid=visitor.vid,
        event_type=payload.eventType,
        utm_source=touchpoint.utm_source,
    )
    return {"vid": visitor.vid, "sid": session.sid, "touchpoint_id": str(touchpoint.id)}
