from __future__ import annotations

import pytest

from app.services.traffic_source import (
    classify_traffic_source,
    is_known_source,
    resolve_request_traffic_source,
)


@pytest.mark.parametrize(
    ("hint", "referrer", "expected"),
    [
        (None, "https://www.instagram.com/explore", "instagram"),
        (None, "https://l.facebook.com/l.php?u=x", "facebook"),
        (None, "https://youtu.be/abc123", "youtube"),
        (None, "https://www.google.co.uk/search?q=blog", "google"),
        (None, "https://twitter.com/someone/status/1", "twitter"),
        (None, "https://x.com/someone", "twitter"),
        (None, "https://news.ycombinator.com/", "other"),
        (None, "", "direct"),
        (None, None, "direct"),
        ("fb_campaign", "", "facebook"),
        ("YouTube-Shorts", None, "youtube"),
    ],
)
def test_classify_traffic_source(hint, referrer, expected):
    assert classify_traffic_source(hint, referrer) == expected


def test_hint_is_consulted_before_referrer():
    assert classify_traffic_source("instagram_bio", "https://www.google.com/") == "instagram"


def test_unmatched_hint_without_referrer_is_other_not_direct():
    assert classify_traffic_source("newsletter", None) == "other"


def test_x_com_needle_does_not_match_unrelated_hosts():
    assert classify_traffic_source(None, "https://dropbox.com/s/file") == "other"


def test_is_known_source():
    assert is_known_source("google") is True
    assert is_known_source("myspace") is False
    assert is_known_source(None) is False


def test_request_source_priority_body_then_cookie_then_referrer():
    referrer = "https://www.google.com/"
    assert resolve_request_traffic_source("instagram", "facebook", referrer) == "instagram"
    assert resolve_request_traffic_source(None, "facebook", referrer) == "facebook"
    # An "other" first-touch cookie carries no information; fall through to the referrer.
    assert resolve_request_traffic_source(None, "other", referrer) == "google"
    assert resolve_request_traffic_source(None, "bogus", None) == "direct"
