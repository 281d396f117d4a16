"""
Traffic source classification.

Maps an explicit source hint (utm-ish query value, client-supplied field or
first-touch cookie) and/or an HTTP referrer onto a small fixed taxonomy.
"""
from __future__ import annotations

from typing import Optional

from app.models.models import TRAFFIC_SOURCE_VALUES

DIRECT = "direct"
OTHER = "other"

# Checked in order; first match wins.
HINT_PATTERNS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("instagram", ("instagram",)),
    ("facebook", ("facebook", "fb")),
    ("youtube", ("youtube", "youtu.be")),
    ("google", ("google",)),
    ("twitter", ("twitter", "x.com")),
)
REFERRER_PATTERNS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("instagram", ("instagram.com",)),
    ("facebook", ("facebook.com", "fb.com")),
    ("youtube", ("youtube.com", "youtu.be")),
    ("google", ("google.",)),
    ("twitter", ("twitter.com", "//x.com", ".x.com")),
)


def _match(value: str, patterns) -> Optional[str]:
    if not value:
        return None
    for category, needles in patterns:
        if any(needle in value for needle in needles):
            return category
    return None


def classify_traffic_source(source_hint: Optional[str], referrer: Optional[str]) -> str:
    """Classify a request into one of TRAFFIC_SOURCE_VALUES.

    The hint is consulted before the referrer. No hint and no referrer means
    the visitor typed the URL or used a bookmark, i.e. ``direct``.
    """
    hint = str(source_hint or "").strip().lower()
    ref = str(referrer or "").strip().lower()

    category = _match(hint, HINT_PATTERNS) or _match(ref, REFERRER_PATTERNS)
    if category:
        return category
    if not hint and not ref:
        return DIRECT
    return OTHER


def is_known_source(value: Optional[str]) -> bool:
    return str(value or "") in TRAFFIC_SOURCE_VALUES


def resolve_request_traffic_source(
    body_source: Optional[str],
    cookie_source: Optional[str],
    referrer: Optional[str],
) -> str:
    """Source for a blog-post session: explicit body hint > first-touch cookie > referrer."""
    if body_source:
        return classify_traffic_source(body_source, referrer)
    if cookie_source and cookie_source != OTHER and is_known_source(cookie_source):
        return str(cookie_source)
    return classify_traffic_source(None, referrer)
