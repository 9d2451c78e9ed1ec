"""
Touchpoint classification — what counts as attributable, and how it is bucketed.

Direct rule:
  A touchpoint is "direct" when it carries NO attribution metadata at all:
    - no utm_source, no utm_medium
    - none of the platform click ids (fbclid, ttclid, gclid, wbraid, gbraid, msclkid, sccid)
    - no referrer (or an empty one)
  Direct touchpoints never receive credit.

Grouping dimensions (report rows):
  source        → utm_source
  medium        → utm_medium
  campaign      → utm_campaign
  creative      → utm_content
  source_medium → "{utm_source}/{utm_medium}"
  Missing values fall back to "direct".
"""

from urllib.parse import parse_qs, urlparse

FIRST_TOUCH = "first_touch"
LAST_TOUCH = "last_touch"
ASSISTED = "assisted"

ATTRIBUTION_MODELS = (FIRST_TOUCH, LAST_TOUCH, ASSISTED)

GROUP_BY_DIMENSIONS = ("source", "medium", "campaign", "creative", "source_medium")

DIRECT = "direct"

UTM_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")

# Platform-authored click ids, column name == query param name (lower-cased)
CLICK_ID_PARAMS = (
    "fbclid",   # Meta / Facebook / Instagram
    "ttclid",   # TikTok
    "gclid",    # Google Ads
    "wbraid",   # Google Ads (web-to-app)
    "gbraid",   # Google Ads (app-to-app)
    "msclkid",  # Microsoft Ads
    "sccid",    # Snapchat (sent as ScCid)
)

# dimension → Touchpoint attribute
_DIMENSION_FIELDS = {
    "source": "utm_source",
    "medium": "utm_medium",
    "campaign": "utm_campaign",
    "creative": "utm_content",
}


def is_direct_touchpoint(touchpoint) -> bool:
    """True when the touchpoint has nothing to attribute revenue to."""
    if touchpoint.utm_source or touchpoint.utm_medium:
        return False
    if any(getattr(touchpoint, name, None) for name in CLICK_ID_PARAMS):
        return False
    return not touchpoint.referrer


def grouping_key(touchpoint, group_by: str) -> str:
    """Report bucket for a touchpoint under the given dimension."""
    if group_by == "source_medium":
        return f"{touchpoint.utm_source or DIRECT}/{touchpoint.utm_medium or DIRECT}"
    field = _DIMENSION_FIELDS.get(group_by, "utm_source")
    return getattr(touchpoint, field) or DIRECT


# --- URL parsing (landing URLs from the tracker) ---

def _first_params(url: str | None) -> dict[str, str]:
    if not url:
        return {}
    try:
        query = urlparse(url).query
    except ValueError:
        return {}
    params = parse_qs(query, keep_blank_values=False)
    return {k.lower(): v[0] for k, v in params.items() if v and v[0]}


def parse_utm_params(url: str | None) -> dict[str, str]:
    """UTM parameters present in a URL. Absent/blank params are omitted."""
    params = _first_params(url)
    return {k: params[k] for k in UTM_PARAMS if k in params}


def parse_click_ids(url: str | None) -> dict[str, str]:
    """Platform click ids present in a URL. Absent/blank ids are omitted."""
    params = _first_params(url)
    return {k: params[k] for k in CLICK_ID_PARAMS if k in params}
