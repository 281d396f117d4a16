from __future__ import annotations

import uuid
from datetime import timedelta

from app.models.models import User, UserSession, Visitor
from app.services.identity import (
    IdentityResolver,
    TrackingContext,
    is_session_active,
)


def _cookie_map(identity):
    return {cookie.name: cookie for cookie in identity.cookies}


def test_is_session_active_is_a_pure_timestamp_predicate(fixed_now):
    session = UserSession(last_seen_at=fixed_now - timedelta(minutes=29), ended_at=None)
    assert is_session_active(session, fixed_now) is True

    session.last_seen_at = fixed_now - timedelta(minutes=31)
    assert is_session_active(session, fixed_now) is False

    session.last_seen_at = fixed_now
    session.ended_at = fixed_now
    assert is_session_active(session, fixed_now) is False
    assert is_session_active(None, fixed_now) is False


def test_fresh_request_creates_visitor_session_and_cookies(db, fixed_now):
    identity = IdentityResolver().resolve(
        db,
        TrackingContext(source="google", referrer="https://www.google.com/", path="/posts/1"),
        now=fixed_now,
    )
    db.commit()

    assert identity.visitor_created is True
    assert identity.session_created is True
    assert identity.visitor.source == "google"
    assert identity.visitor.sessions_count == 1
    assert identity.session.visitor_id == identity.visitor.id
    assert identity.session.landing_path == "/posts/1"

    cookies = _cookie_map(identity)
    assert cookies["ps_vid"].value == identity.visitor.id
    assert cookies["ps_vid"].max_age == 30 * 24 * 60 * 60
    assert cookies["ps_sid"].value == identity.session.id
    assert cookies["ps_sid"].max_age == 30 * 60
    assert cookies["ps_src"].value == "google"


def test_unknown_visitor_cookie_is_recreated_under_same_id(db, fixed_now):
    token = str(uuid.uuid4())
    identity = IdentityResolver().resolve(
        db,
        TrackingContext(visitor_cookie=token, source="instagram", path="/"),
        now=fixed_now,
    )
    db.commit()

    assert identity.visitor.id == token
    assert identity.visitor_created is True
    assert db.get(Visitor, token) is not None
    assert db.query(Visitor).count() == 1


def test_active_session_is_reused_and_slid(db, fixed_now):
    resolver = IdentityResolver()
    first = resolver.resolve(db, TrackingContext(source="direct", path="/"), now=fixed_now)
    db.commit()

    later = fixed_now + timedelta(minutes=20)
    second = resolver.resolve(
        db,
        TrackingContext(
            visitor_cookie=first.visitor.id,
            session_cookie=first.session.id,
            source_cookie="direct",
            path="/about",
        ),
        now=later,
    )
    db.commit()

    assert second.session.id == first.session.id
    assert second.session_created is False
    assert second.session.last_seen_at.replace(tzinfo=None) == later.replace(tzinfo=None)
    assert db.get(Visitor, first.visitor.id).sessions_count == 1
    assert _cookie_map(second)["ps_sid"].value == first.session.id


def test_stale_session_is_ended_and_replaced(db, fixed_now):
    resolver = IdentityResolver()
    first = resolver.resolve(db, TrackingContext(source="direct", path="/"), now=fixed_now)
    db.commit()
    stale_id = first.session.id

    later = fixed_now + timedelta(minutes=31)
    second = resolver.resolve(
        db,
        TrackingContext(visitor_cookie=first.visitor.id, session_cookie=stale_id, path="/again"),
        now=later,
    )
    db.commit()

    assert second.session.id != stale_id
    assert second.session_created is True
    stale = db.get(UserSession, stale_id)
    assert stale.ended_at is not None
    assert stale.ended_at.replace(tzinfo=None) == fixed_now.replace(tzinfo=None)
    # The new session inherits the visitor's first-touch source.
    assert second.session.source == "direct"
    assert db.get(Visitor, first.visitor.id).sessions_count == 2


def test_source_cookie_is_write_once(db, fixed_now):
    resolver = IdentityResolver()
    first = resolver.resolve(db, TrackingContext(source="youtube", path="/"), now=fixed_now)
    db.commit()
    assert _cookie_map(first)["ps_src"].value == "youtube"

    second = resolver.resolve(
        db,
        TrackingContext(
            visitor_cookie=first.visitor.id,
            session_cookie=first.session.id,
            source_cookie="youtube",
            source="google",
        ),
        now=fixed_now + timedelta(minutes=1),
    )
    db.commit()

    assert "ps_src" not in _cookie_map(second)
    assert db.get(Visitor, first.visitor.id).source == "youtube"


def test_identified_user_links_visitor_and_backfills_first_touch_once(db, user, fixed_now):
    resolver = IdentityResolver()
    anonymous = resolver.resolve(
        db,
        TrackingContext(source="instagram", referrer="https://instagram.com/p/1", path="/posts/1"),
        now=fixed_now,
    )
    db.commit()

    signed_in = resolver.resolve(
        db,
        TrackingContext(
            visitor_cookie=anonymous.visitor.id,
            session_cookie=anonymous.session.id,
            source_cookie="instagram",
            user_id=user.id,
            source="google",
            referrer="https://www.google.com/",
            path="/pricing",
        ),
        now=fixed_now + timedelta(minutes=2),
    )
    db.commit()

    assert signed_in.visitor.user_id == user.id
    assert signed_in.session.user_id == user.id

    db.expire_all()
    stored = db.get(User, user.id)
    assert stored.source == "instagram"
    assert stored.referrer == "https://instagram.com/p/1"
    assert stored.landing_path == "/posts/1"

    resolver.resolve(
        db,
        TrackingContext(user_id=user.id, source="facebook", path="/elsewhere"),
        now=fixed_now + timedelta(days=3),
    )
    db.commit()
    db.expire_all()
    assert db.get(User, user.id).source == "instagram"


def test_active_session_follows_current_user_while_visitor_keeps_first_link(db, user, fixed_now):
    other = User(id="22222222-2222-4222-8222-222222222222", email="second@example.test")
    db.add(other)
    db.commit()

    resolver = IdentityResolver()
    first = resolver.resolve(db, TrackingContext(user_id=user.id, source="direct", path="/"), now=fixed_now)
    db.commit()

    switched = resolver.resolve(
        db,
        TrackingContext(
            visitor_cookie=first.visitor.id,
            session_cookie=first.session.id,
            source_cookie=first.visitor.source,
            user_id=other.id,
        ),
        now=fixed_now + timedelta(minutes=5),
    )
    db.commit()
    db.expire_all()

    assert switched.session.id == first.session.id
    assert db.get(UserSession, first.session.id).user_id == other.id
    assert db.get(Visitor, first.visitor.id).user_id == user.id
