"""
Visitor/session identifiers, privacy hashing, and device parsing.

vid / sid  → 32 hex chars from `secrets` (cookie values set by the tracker)
PII        → SHA-256 of the lower-cased, stripped value; plaintext is never stored
Secrets    → SHA-256 of the stripped value, case preserved
Device     → parsed server-side from the User-Agent header
"""

import hashlib
import secrets
from dataclasses import dataclass


def generate_visitor_id() -> str:
    return secrets.token_hex(16)


def generate_session_id() -> str:
    return secrets.token_hex(16)


def hash_identifier(value: str) -> str:
    """SHA-256 hex of a phone/email/IP, normalized for matching."""
    return hashlib.sha256(value.strip().lower().encode()).hexdigest()


def hash_secret(value: str) -> str:
    """SHA-256 hex of a shared secret. Stripped but case-sensitive."""
    return hashlib.sha256(value.strip().encode()).hexdigest()


@dataclass(frozen=True)
class DeviceInfo:
    device_type: str
    browser: str
    os: str


def parse_device(ua_string: str | None) -> DeviceInfo:
    """Device class, browser family and OS family from a User-Agent string."""
    if not ua_string:
        return DeviceInfo(device_type="unknown", browser="Unknown", os="Unknown")

    from user_agents import parse as parse_ua
    parsed = parse_ua(ua_string)

    if parsed.is_tablet:
        device = "tablet"
    elif parsed.is_mobile:
        device = "mobile"
    elif parsed.is_pc:
        device = "desktop"
    else:
        device = "other"

    return DeviceInfo(
        device_type=device,
        browser=parsed.browser.family or "Unknown",
        os=parsed.os.family or "Unknown",
    )
