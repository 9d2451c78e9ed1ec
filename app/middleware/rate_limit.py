"""
Rate limiter — in-memory sliding window.

Limits:
  - Per IP on /api/collect: configurable (default 120/min)
"""

import time
from fastapi import HTTPException, Request
from app.config import get_settings

import structlog

logger = structlog.get_logger()

_memory_store: dict[str, list[float]] = {}
_SWEEP_THRESHOLD = 10000

_PRIVATE_PREFIXES = (
    "10.", "172.16.", "172.17.", "172.18.", "172.19.", "172.20.", "172.21.",
    "172.22.", "172.23.", "172.24.", "172.25.", "172.26.", "172.27.", "172.28.",
    "172.29.", "172.30.", "172.31.", "192.168.", "127.", "::1",
)


def _sliding_window_check(key: str, limit: int, window_seconds: int = 60) -> tuple[bool, int]:
    now = time.time()
    cutoff = now - window_seconds

    # Periodic cleanup of clients whose window has fully expired
    if len(_memory_store) > _SWEEP_THRESHOLD:
        stale = [k for k, hits in _memory_store.items() if not hits or hits[-1] <= cutoff]
        for k in stale:
            del _memory_store[k]

    if key not in _memory_store:
        _memory_store[key] = []

    _memory_store[key] = [t for t in _memory_store[key] if t > cutoff]
    current_count = len(_memory_store[key])

    if current_count >= limit:
        return False, 0

    _memory_store[key].append(now)
    return True, limit - current_count - 1


def check_rate_limit(key: str, limit: int, window: int = 60):
    allowed, remaining = _sliding_window_check(key, limit, window)
    if not allowed:
        logger.info("rate_limited", key=key, limit=limit)
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Slow down.",
            headers={
                "Retry-After": str(window),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    return remaining


def get_real_ip(request: Request) -> str:
    """Extract real client IP from x-forwarded-for or request."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ips = [ip.strip() for ip in forwarded.split(",")]
        for ip in ips:
            if not ip.startswith(_PRIVATE_PREFIXES):
                return ip
        return ips[0]
    return request.client.host if request.client else "unknown"


def rate_limit_collect(request: Request, limit: int | None = None):
    settings = get_settings()
    ip = get_real_ip(request)
    return check_rate_limit(
        f"collect:{ip}",
        limit or settings.rate_limit_collect_per_minute,
    )
