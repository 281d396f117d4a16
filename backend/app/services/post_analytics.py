"""
Per-post analytics aggregation.

Re-derives a post's whole aggregate row from its blog post sessions and raw
engagement events, then overwrites the stored row. Recomputing with no new
events yields identical numbers, so redundant recomputation is harmless.
"""
from __future__ import annotations

import asyncio
import logging
import statistics
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal, conflict_insert
from app.core.time import day_window_utc, ensure_utc, now_utc
from app.models.models import (
    BlogEngagementEvent,
    BlogPostAnalytics,
    BlogPostDailyStats,
    BlogPostSession,
)

logger = logging.getLogger(__name__)

SCROLL_MILESTONES = (25, 50, 75, 100)
BOUNCE_MAX_SECONDS = 10
SOURCE_COLUMNS = {
    "direct": "source_direct",
    "google": "source_google",
    "instagram": "source_instagram",
    "facebook": "source_facebook",
    "youtube": "source_youtube",
    "twitter": "source_twitter",
    "other": "source_other",
}
SHARE_PLATFORM_COLUMNS = {
    "twitter": "twitter_shares",
    "facebook": "facebook_shares",
    "linkedin": "linkedin_shares",
}
EVENT_COUNT_COLUMNS = {
    "cta_click": "total_clicks",
    "outbound_click": "outbound_clicks",
    "internal_click": "internal_links_clicked",
    "copy_link": "copy_link_count",
    "newsletter_signup": "newsletter_signups",
    "comment": "comments_count",
    "like": "likes_count",
    "bookmark": "bookmarks_count",
    "share": "total_shares",
}


@dataclass(frozen=True)
class EngagementWeights:
    """Linear weights for the engagement score heuristic."""

    views: float = 1.0
    avg_time: float = 0.5
    scroll_100: float = 5.0
    shares: float = 10.0
    newsletter_signups: float = 20.0
    cta_clicks: float = 3.0
    avg_scroll_depth: float = 0.5

    @classmethod
    def from_settings(cls) -> "EngagementWeights":
        defaults = cls()
        return cls(
            views=float(getattr(settings, "ENGAGEMENT_WEIGHT_VIEWS", defaults.views)),
            avg_time=float(getattr(settings, "ENGAGEMENT_WEIGHT_AVG_TIME", defaults.avg_time)),
            scroll_100=float(getattr(settings, "ENGAGEMENT_WEIGHT_SCROLL_100", defaults.scroll_100)),
            shares=float(getattr(settings, "ENGAGEMENT_WEIGHT_SHARES", defaults.shares)),
            newsletter_signups=float(
                getattr(settings, "ENGAGEMENT_WEIGHT_NEWSLETTER_SIGNUPS", defaults.newsletter_signups)
            ),
            cta_clicks=float(getattr(settings, "ENGAGEMENT_WEIGHT_CTA_CLICKS", defaults.cta_clicks)),
            avg_scroll_depth=float(
                getattr(settings, "ENGAGEMENT_WEIGHT_AVG_SCROLL_DEPTH", defaults.avg_scroll_depth)
            ),
        )


def _round2(value: float | int) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _round_int(value: float | int) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _safe_percent(numerator: int | float, denominator: int | float) -> float:
    den = float(denominator or 0)
    if den <= 0:
        return 0.0
    return _round2(float(numerator or 0) / den * 100)


def calculate_engagement_score(metrics: dict[str, Any], weights: Optional[EngagementWeights] = None) -> float:
    w = weights or EngagementWeights.from_settings()
    score = (
        float(metrics.get("total_views") or 0) * w.views
        + float(metrics.get("avg_time_on_page") or 0) * w.avg_time
        + float(metrics.get("scroll_100_percent") or 0) * w.scroll_100
        + float(metrics.get("total_shares") or 0) * w.shares
        + float(metrics.get("newsletter_signups") or 0) * w.newsletter_signups
        + float(metrics.get("cta_clicks") or 0) * w.cta_clicks
        + float(metrics.get("avg_scroll_depth") or 0) * w.avg_scroll_depth
    )
    return _round2(score)


def summarize_sessions(rows: Iterable[Any]) -> dict[str, Any]:
    """Session-derived metrics. Rows need the BlogPostSession columns."""
    rows = list(rows)
    session_ids = {row.session_id for row in rows}
    visitor_ids = {row.visitor_id for row in rows}
    times = [int(row.time_on_page or 0) for row in rows]
    depths = [float(row.max_scroll_depth or 0) for row in rows]
    total_views = len(session_ids)

    engaged = sum(1 for row in rows if row.was_engaged)
    exits = sum(1 for row in rows if row.is_exit_page)
    bounces = sum(1 for row in rows if not row.was_engaged and int(row.time_on_page or 0) < BOUNCE_MAX_SECONDS)

    summary: dict[str, Any] = {
        "total_views": total_views,
        "unique_visitors": len(visitor_ids),
        "avg_time_on_page": _round_int(statistics.fmean(times)) if times else 0,
        "median_time_on_page": _round_int(statistics.median(times)) if times else 0,
        "total_time_spent": sum(times),
        "avg_scroll_depth": _round2(statistics.fmean(depths)) if depths else 0.0,
        "cta_clicks": sum(1 for row in rows if row.clicked_cta),
        "form_submissions": sum(1 for row in rows if row.submitted_form),
        "engaged_sessions": engaged,
        "engagement_rate": _safe_percent(engaged, total_views),
        "bounce_rate": _safe_percent(bounces, total_views),
        "exit_rate": _safe_percent(exits, total_views),
    }
    for milestone in SCROLL_MILESTONES:
        summary[f"scroll_{milestone}_percent"] = sum(1 for depth in depths if depth >= milestone)
    for column in SOURCE_COLUMNS.values():
        summary[column] = 0
    for row in rows:
        column = SOURCE_COLUMNS.get(str(row.traffic_source or ""), "source_other")
        summary[column] += 1

    entered = [ensure_utc(row.entered_at) for row in rows if row.entered_at is not None]
    summary["first_view_at"] = min(entered) if entered else None
    summary["last_view_at"] = max(entered) if entered else None
    return summary


def summarize_events(rows: Iterable[Any]) -> dict[str, int]:
    """Counts from the raw event log. Rows need event_type and event_data."""
    counts = {column: 0 for column in EVENT_COUNT_COLUMNS.values()}
    for column in SHARE_PLATFORM_COLUMNS.values():
        counts[column] = 0
    for row in rows:
        column = EVENT_COUNT_COLUMNS.get(str(row.event_type or ""))
        if column:
            counts[column] += 1
        if row.event_type == "share":
            data = row.event_data if isinstance(row.event_data, dict) else {}
            platform = str(data.get("platform") or "").strip().lower()
            platform_column = SHARE_PLATFORM_COLUMNS.get(platform)
            if platform_column:
                counts[platform_column] += 1
    return counts


def compute_post_analytics(
    db: Session,
    post_id: int,
    *,
    weights: Optional[EngagementWeights] = None,
) -> dict[str, Any]:
    sessions = (
        db.query(BlogPostSession)
        .filter(BlogPostSession.post_id == post_id)
        .order_by(BlogPostSession.entered_at, BlogPostSession.id)
        .all()
    )
    events = (
        db.query(BlogEngagementEvent.event_type, BlogEngagementEvent.event_data)
        .filter(BlogEngagementEvent.post_id == post_id)
        .all()
    )

    metrics = summarize_sessions(sessions)
    metrics.update(summarize_events(events))
    metrics["engagement_score"] = calculate_engagement_score(metrics, weights)
    return metrics


def compute_daily_stats(db: Session, post_id: int, *, day_key: date) -> dict[str, Any]:
    start, end = day_window_utc(day_key)
    sessions = (
        db.query(BlogPostSession)
        .filter(
            BlogPostSession.post_id == post_id,
            BlogPostSession.entered_at >= start,
            BlogPostSession.entered_at < end,
        )
        .all()
    )
    events = (
        db.query(BlogEngagementEvent.event_type, BlogEngagementEvent.event_data)
        .filter(
            BlogEngagementEvent.post_id == post_id,
            BlogEngagementEvent.occurred_at >= start,
            BlogEngagementEvent.occurred_at < end,
            BlogEngagementEvent.event_type.in_(("share", "newsletter_signup")),
        )
        .all()
    )
    session_summary = summarize_sessions(sessions)
    event_summary = summarize_events(events)
    return {
        "views": session_summary["total_views"],
        "unique_visitors": session_summary["unique_visitors"],
        "avg_time_on_page": session_summary["avg_time_on_page"],
        "avg_scroll_depth": session_summary["avg_scroll_depth"],
        "engagement_rate": session_summary["engagement_rate"],
        "total_shares": event_summary["total_shares"],
        "newsletter_signups": event_summary["newsletter_signups"],
    }


def _stored_columns() -> set[str]:
    return {column.name for column in BlogPostAnalytics.__table__.columns} - {"id", "post_id", "last_updated_at"}


def upsert_post_analytics(db: Session, post_id: int, metrics: dict[str, Any], *, now: datetime) -> None:
    values = {key: value for key, value in metrics.items() if key in _stored_columns()}
    stmt = conflict_insert(db, BlogPostAnalytics).values(post_id=post_id, last_updated_at=now, **values)
    set_ = {key: stmt.excluded[key] for key in values}
    set_["last_updated_at"] = stmt.excluded.last_updated_at
    db.execute(stmt.on_conflict_do_update(index_elements=["post_id"], set_=set_))


def upsert_daily_stats(db: Session, post_id: int, *, day_key: date, now: datetime) -> dict[str, Any]:
    stats = compute_daily_stats(db, post_id, day_key=day_key)
    stmt = conflict_insert(db, BlogPostDailyStats).values(
        post_id=post_id,
        stat_date=day_key,
        created_at=now,
        **stats,
    )
    db.execute(
        stmt.on_conflict_do_update(
            index_elements=["post_id", "stat_date"],
            set_={key: stmt.excluded[key] for key in stats},
        )
    )
    return stats


def recompute_post_analytics(
    db: Session,
    post_id: int,
    *,
    weights: Optional[EngagementWeights] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Compute and overwrite the aggregate row (and today's daily row) in one transaction."""
    now = now or now_utc()
    try:
        metrics = compute_post_analytics(db, post_id, weights=weights)
        upsert_post_analytics(db, post_id, metrics, now=now)
        upsert_daily_stats(db, post_id, day_key=now.date(), now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return metrics


def run_post_analytics_recompute(post_id: int) -> dict[str, Any]:
    """Recompute with a dedicated session (worker-thread entry point)."""
    db = SessionLocal()
    try:
        return recompute_post_analytics(db, post_id)
    finally:
        db.close()


async def recompute_post_analytics_async(post_id: int) -> dict[str, Any]:
    """Queue processor: runs the blocking recomputation off the event loop."""
    return await asyncio.to_thread(run_post_analytics_recompute, post_id)


def serialize_post_analytics(row: BlogPostAnalytics) -> dict[str, Any]:
    payload: dict[str, Any] = {"post_id": int(row.post_id)}
    for column in sorted(_stored_columns()):
        value = getattr(row, column)
        if isinstance(value, datetime):
            payload[column] = ensure_utc(value).isoformat()
        elif isinstance(value, float):
            payload[column] = float(value)
        else:
            payload[column] = value
    payload["last_updated_at"] = ensure_utc(row.last_updated_at).isoformat() if row.last_updated_at else None
    return payload


def get_post_analytics(db: Session, post_id: int) -> Optional[dict[str, Any]]:
    row = db.query(BlogPostAnalytics).filter(BlogPostAnalytics.post_id == post_id).first()
    if row is None:
        return None
    return serialize_post_analytics(row)
