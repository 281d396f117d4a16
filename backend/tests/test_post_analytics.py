from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

from app.models.models import (
    BlogEngagementEvent,
    BlogPostAnalytics,
    BlogPostDailyStats,
    BlogPostSession,
)
from app.services import post_analytics
from app.services.post_analytics import (
    EngagementWeights,
    calculate_engagement_score,
    get_post_analytics,
    recompute_post_analytics,
)


def _add_session(db, *, post_id=1, entered_at, visitor_id=None, **fields):
    values = {
        "time_on_page": 0,
        "max_scroll_depth": 0,
        "traffic_source": "direct",
        "was_engaged": False,
        "is_landing_page": True,
        "is_exit_page": False,
    }
    values.update(fields)
    row = BlogPostSession(
        id=str(uuid.uuid4()),
        post_id=post_id,
        session_id=str(uuid.uuid4()),
        visitor_id=visitor_id or str(uuid.uuid4()),
        entered_at=entered_at,
        **values,
    )
    db.add(row)
    return row


def _add_event(db, event_type, *, post_id=1, occurred_at, event_data=None):
    db.add(
        BlogEngagementEvent(
            post_id=post_id,
            session_id=str(uuid.uuid4()),
            visitor_id=str(uuid.uuid4()),
            event_type=event_type,
            event_data=event_data or {},
            occurred_at=occurred_at,
        )
    )


def test_engagement_rate_for_ten_sessions_with_three_engaged(db, post, fixed_now):
    for index in range(10):
        _add_session(
            db,
            entered_at=fixed_now - timedelta(minutes=index),
            was_engaged=index < 3,
            time_on_page=40 if index < 3 else 5,
        )
    db.commit()

    metrics = recompute_post_analytics(db, post.id, now=fixed_now)

    assert metrics["total_views"] == 10
    assert metrics["engagement_rate"] == 30.00
    stored = db.query(BlogPostAnalytics).filter(BlogPostAnalytics.post_id == post.id).one()
    assert stored.engagement_rate == 30.00
    assert stored.total_views == 10


def test_zero_views_yields_zero_rates_not_nan(db, post, fixed_now):
    metrics = recompute_post_analytics(db, post.id, now=fixed_now)

    assert metrics["total_views"] == 0
    for key in ("engagement_rate", "bounce_rate", "exit_rate", "avg_scroll_depth"):
        assert metrics[key] == 0
    assert metrics["avg_time_on_page"] == 0
    assert metrics["median_time_on_page"] == 0
    assert metrics["first_view_at"] is None
    assert metrics["engagement_score"] == 0

    stored = get_post_analytics(db, post.id)
    assert stored["engagement_rate"] == 0
    assert stored["total_views"] == 0


def test_session_metrics(db, post, fixed_now):
    shared_visitor = str(uuid.uuid4())
    _add_session(db, entered_at=fixed_now - timedelta(hours=2), visitor_id=shared_visitor,
                 time_on_page=10, max_scroll_depth=25, traffic_source="google")
    _add_session(db, entered_at=fixed_now - timedelta(hours=1), visitor_id=shared_visitor,
                 time_on_page=20, max_scroll_depth=60, traffic_source="google", is_exit_page=True)
    _add_session(db, entered_at=fixed_now, time_on_page=45, max_scroll_depth=100,
                 traffic_source="instagram", clicked_cta=True, submitted_form=True, was_engaged=True)
    _add_session(db, entered_at=fixed_now - timedelta(minutes=5), time_on_page=4,
                 max_scroll_depth=80, traffic_source="twitter", is_exit_page=True)
    db.commit()

    metrics = recompute_post_analytics(db, post.id, now=fixed_now)

    assert metrics["total_views"] == 4
    assert metrics["unique_visitors"] == 3
    assert metrics["total_time_spent"] == 79
    assert metrics["avg_time_on_page"] == 20  # 19.75 rounds half-up
    assert metrics["median_time_on_page"] == 15
    assert metrics["avg_scroll_depth"] == 66.25
    assert [metrics[f"scroll_{m}_percent"] for m in (25, 50, 75, 100)] == [4, 3, 2, 1]
    assert metrics["source_google"] == 2
    assert metrics["source_instagram"] == 1
    assert metrics["source_twitter"] == 1
    assert metrics["source_direct"] == 0
    assert metrics["cta_clicks"] == 1
    assert metrics["form_submissions"] == 1
    assert metrics["engagement_rate"] == 25.00
    assert metrics["exit_rate"] == 50.00
    # Unengaged sessions shorter than ten seconds.
    assert metrics["bounce_rate"] == 25.00
    assert metrics["first_view_at"].replace(tzinfo=None) == (fixed_now - timedelta(hours=2)).replace(tzinfo=None)
    assert metrics["last_view_at"].replace(tzinfo=None) == fixed_now.replace(tzinfo=None)


def test_event_counts_and_share_platform_split(db, post, fixed_now):
    _add_session(db, entered_at=fixed_now)
    for platform in ("twitter", "Twitter", "linkedin", "facebook", "mastodon"):
        _add_event(db, "share", occurred_at=fixed_now, event_data={"platform": platform})
    _add_event(db, "share", occurred_at=fixed_now)
    for event_type in ("cta_click", "cta_click", "outbound_click", "internal_click", "copy_link",
                       "newsletter_signup", "comment", "like", "like", "bookmark", "view"):
        _add_event(db, event_type, occurred_at=fixed_now)
    _add_event(db, "share", post_id=2, occurred_at=fixed_now, event_data={"platform": "twitter"})
    db.commit()

    metrics = recompute_post_analytics(db, post.id, now=fixed_now)

    assert metrics["total_shares"] == 6
    assert metrics["twitter_shares"] == 2
    assert metrics["facebook_shares"] == 1
    assert metrics["linkedin_shares"] == 1
    assert metrics["total_clicks"] == 2
    assert metrics["outbound_clicks"] == 1
    assert metrics["internal_links_clicked"] == 1
    assert metrics["copy_link_count"] == 1
    assert metrics["newsletter_signups"] == 1
    assert metrics["comments_count"] == 1
    assert metrics["likes_count"] == 2
    assert metrics["bookmarks_count"] == 1


def test_recompute_is_idempotent(db, post, fixed_now):
    for index in range(5):
        _add_session(db, entered_at=fixed_now - timedelta(minutes=index), time_on_page=index * 11,
                     max_scroll_depth=index * 20, was_engaged=index % 2 == 0)
    _add_event(db, "share", occurred_at=fixed_now, event_data={"platform": "facebook"})
    db.commit()

    first_metrics = recompute_post_analytics(db, post.id, now=fixed_now)
    first_row = get_post_analytics(db, post.id)
    second_metrics = recompute_post_analytics(db, post.id, now=fixed_now + timedelta(minutes=1))
    second_row = get_post_analytics(db, post.id)

    assert first_metrics == second_metrics
    first_row.pop("last_updated_at")
    second_row.pop("last_updated_at")
    assert first_row == second_row
    assert db.query(BlogPostAnalytics).count() == 1


def test_recompute_upserts_todays_daily_stats(db, post, fixed_now):
    _add_session(db, entered_at=fixed_now - timedelta(days=1), was_engaged=True)
    _add_session(db, entered_at=fixed_now - timedelta(hours=1), was_engaged=True, time_on_page=30)
    _add_session(db, entered_at=fixed_now, time_on_page=10)
    _add_event(db, "share", occurred_at=fixed_now)
    _add_event(db, "share", occurred_at=fixed_now - timedelta(days=1))
    db.commit()

    recompute_post_analytics(db, post.id, now=fixed_now)
    recompute_post_analytics(db, post.id, now=fixed_now)

    rows = db.query(BlogPostDailyStats).all()
    assert len(rows) == 1
    today = rows[0]
    assert today.stat_date == fixed_now.date()
    assert today.views == 2
    assert today.avg_time_on_page == 20
    assert today.engagement_rate == 50.00
    assert today.total_shares == 1


def test_engagement_score_uses_default_weights():
    metrics = {
        "total_views": 100,
        "avg_time_on_page": 60,
        "scroll_100_percent": 10,
        "total_shares": 2,
        "newsletter_signups": 1,
        "cta_clicks": 4,
        "avg_scroll_depth": 55.5,
    }
    # 100 + 30 + 50 + 20 + 20 + 12 + 27.75
    assert calculate_engagement_score(metrics, EngagementWeights()) == 259.75


def test_engagement_weights_come_from_settings(monkeypatch):
    monkeypatch.setattr(post_analytics.settings, "ENGAGEMENT_WEIGHT_VIEWS", 2.0, raising=False)
    monkeypatch.setattr(post_analytics.settings, "ENGAGEMENT_WEIGHT_SHARES", 0.0, raising=False)

    weights = EngagementWeights.from_settings()
    assert weights.views == 2.0
    assert weights.shares == 0.0
    assert calculate_engagement_score({"total_views": 3, "total_shares": 5}) == 6.0


def test_async_recompute_uses_its_own_session(monkeypatch, session_factory, post, fixed_now):
    monkeypatch.setattr(post_analytics, "SessionLocal", session_factory)

    metrics = asyncio.run(post_analytics.recompute_post_analytics_async(post.id))

    assert metrics["total_views"] == 0
    check = session_factory()
    try:
        assert check.query(BlogPostAnalytics).count() == 1
    finally:
        check.close()
