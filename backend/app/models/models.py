"""
SQLAlchemy models for visitor tracking and blog engagement analytics.
"""
import uuid

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Numeric, Date,
    ForeignKey, DateTime, JSON, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.sql import func

from app.core.database import Base

TRAFFIC_SOURCE_VALUES = ("instagram", "facebook", "youtube", "google", "twitter", "direct", "other")

ENGAGEMENT_EVENT_TYPE_VALUES = (
    "view",
    "scroll_milestone",
    "time_milestone",
    "click",
    "share",
    "comment",
    "like",
    "bookmark",
    "exit",
    "cta_click",
    "newsletter_signup",
    "form_submit",
    "copy_link",
    "outbound_click",
    "internal_click",
)


def _new_uuid() -> str:
    return str(uuid.uuid4())


def _in_list(column: str, values) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


class User(Base):
    """Registered account. Owned by the auth service; tracking only fills first-touch fields."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_uuid)
    email = Column(String(255), unique=True, nullable=False)
    source = Column(String(32), nullable=True)
    referrer = Column(Text, nullable=True)
    landing_path = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class BlogPost(Base):
    """Blog post. Owned by the content admin; tracking only checks existence."""
    __tablename__ = "blog_posts"

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=True)
    status = Column(String(20), nullable=False, default="draft")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class Visitor(Base):
    """Long-lived anonymous identity (30-day cookie). First-touch fields are write-once."""
    __tablename__ = "visitors"

    id = Column(String(36), primary_key=True, default=_new_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    source = Column(String(32), nullable=False, default="other")
    referrer = Column(Text, nullable=True)
    landing_path = Column(String(512), nullable=True)
    first_seen_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    sessions_count = Column(Integer, nullable=False, default=0)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_visitors_user_id", "user_id"),
        Index("idx_visitors_source", "source"),
    )


class UserSession(Base):
    """Browsing session; active while last_seen_at is within the inactivity window."""
    __tablename__ = "user_sessions"

    id = Column(String(36), primary_key=True, default=_new_uuid)
    visitor_id = Column(String(36), ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    source = Column(String(32), nullable=False, default="other")
    landing_path = Column(String(512), nullable=True)
    user_agent = Column(String(512), nullable=True)
    ip = Column(String(128), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    ended_at = Column(DateTime(timezone=True), nullable=True)
    page_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_user_sessions_visitor_time", "visitor_id", "started_at"),
        Index("idx_user_sessions_user_time", "user_id", "started_at"),
        Index("idx_user_sessions_last_seen", "last_seen_at"),
    )


class SessionEvent(Base):
    """Ordered navigation log for a session. Append-only."""
    __tablename__ = "session_events"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(36), ForeignKey("user_sessions.id", ondelete="CASCADE"), nullable=False)
    path = Column(String(512), nullable=False)
    referrer = Column(Text, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_session_events_session_time", "session_id", "occurred_at"),
    )


class TrafficEvent(Base):
    """Lightweight site-wide traffic log; also the fallback sink when full tracking fails."""
    __tablename__ = "traffic_events"

    id = Column(Integer, primary_key=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    source = Column(String(32), nullable=False)
    referrer = Column(Text, nullable=True)
    path = Column(String(512), nullable=True)
    user_agent = Column(String(512), nullable=True)
    ip = Column(String(128), nullable=True)

    __table_args__ = (
        Index("idx_traffic_events_time", "occurred_at"),
        Index("idx_traffic_events_source", "source"),
    )


class BlogPostSession(Base):
    """Engagement record for one (session, post) pair. Progress fields only move forward."""
    __tablename__ = "blog_post_sessions"

    id = Column(String(36), primary_key=True, default=_new_uuid)
    post_id = Column(Integer, ForeignKey("blog_posts.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(String(36), ForeignKey("user_sessions.id", ondelete="CASCADE"), nullable=False)
    visitor_id = Column(String(36), ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    entered_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    exited_at = Column(DateTime(timezone=True), nullable=True)
    time_on_page = Column(Integer, nullable=False, default=0)

    max_scroll_depth = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)
    read_to_end = Column(Boolean, nullable=False, default=False)

    was_engaged = Column(Boolean, nullable=False, default=False)
    clicked_cta = Column(Boolean, nullable=False, default=False)
    shared_content = Column(Boolean, nullable=False, default=False)
    submitted_form = Column(Boolean, nullable=False, default=False)

    traffic_source = Column(String(32), nullable=False)
    referrer = Column(Text, nullable=True)

    is_landing_page = Column(Boolean, nullable=False, default=False)
    is_exit_page = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("session_id", "post_id", name="uq_blog_post_sessions_session_post"),
        CheckConstraint(_in_list("traffic_source", TRAFFIC_SOURCE_VALUES), name="valid_traffic_source"),
        CheckConstraint("max_scroll_depth >= 0 AND max_scroll_depth <= 100", name="valid_scroll_depth"),
        Index("idx_blog_post_sessions_post", "post_id", "entered_at"),
        Index("idx_blog_post_sessions_source", "post_id", "traffic_source"),
    )


class BlogEngagementEvent(Base):
    """Immutable raw engagement event. Source of truth for re-derived statistics."""
    __tablename__ = "blog_engagement_events"

    id = Column(Integer, primary_key=True)
    post_id = Column(Integer, ForeignKey("blog_posts.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(String(36), ForeignKey("user_sessions.id", ondelete="CASCADE"), nullable=False)
    visitor_id = Column(String(36), ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    event_type = Column(String(32), nullable=False)
    event_data = Column(JSON, nullable=False, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint(_in_list("event_type", ENGAGEMENT_EVENT_TYPE_VALUES), name="valid_engagement_event_type"),
        Index("idx_blog_engagement_post_time", "post_id", "occurred_at"),
        Index("idx_blog_engagement_session", "session_id", "occurred_at"),
        Index("idx_blog_engagement_type", "event_type", "post_id"),
    )


class BlogPostAnalytics(Base):
    """Per-post aggregate row. Fully derived; overwritten on every recomputation."""
    __tablename__ = "blog_post_analytics"

    id = Column(Integer, primary_key=True)
    post_id = Column(Integer, ForeignKey("blog_posts.id", ondelete="CASCADE"), nullable=False, unique=True)

    # Views
    total_views = Column(Integer, nullable=False, default=0)
    unique_visitors = Column(Integer, nullable=False, default=0)

    # Time on page (seconds)
    avg_time_on_page = Column(Integer, nullable=False, default=0)
    median_time_on_page = Column(Integer, nullable=False, default=0)
    total_time_spent = Column(Integer, nullable=False, default=0)

    # Scroll
    avg_scroll_depth = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)
    scroll_25_percent = Column(Integer, nullable=False, default=0)
    scroll_50_percent = Column(Integer, nullable=False, default=0)
    scroll_75_percent = Column(Integer, nullable=False, default=0)
    scroll_100_percent = Column(Integer, nullable=False, default=0)

    # Interactions
    total_clicks = Column(Integer, nullable=False, default=0)
    cta_clicks = Column(Integer, nullable=False, default=0)
    outbound_clicks = Column(Integer, nullable=False, default=0)
    internal_links_clicked = Column(Integer, nullable=False, default=0)

    # Social
    total_shares = Column(Integer, nullable=False, default=0)
    twitter_shares = Column(Integer, nullable=False, default=0)
    facebook_shares = Column(Integer, nullable=False, default=0)
    linkedin_shares = Column(Integer, nullable=False, default=0)
    copy_link_count = Column(Integer, nullable=False, default=0)

    # Content engagement
    comments_count = Column(Integer, nullable=False, default=0)
    likes_count = Column(Integer, nullable=False, default=0)
    bookmarks_count = Column(Integer, nullable=False, default=0)

    # Bounce & exit (percentages)
    bounce_rate = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)
    exit_rate = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)

    # Traffic sources (session counts)
    source_direct = Column(Integer, nullable=False, default=0)
    source_google = Column(Integer, nullable=False, default=0)
    source_instagram = Column(Integer, nullable=False, default=0)
    source_facebook = Column(Integer, nullable=False, default=0)
    source_youtube = Column(Integer, nullable=False, default=0)
    source_twitter = Column(Integer, nullable=False, default=0)
    source_other = Column(Integer, nullable=False, default=0)

    # Conversions
    newsletter_signups = Column(Integer, nullable=False, default=0)
    form_submissions = Column(Integer, nullable=False, default=0)

    engagement_score = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    engagement_rate = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)

    first_view_at = Column(DateTime(timezone=True), nullable=True)
    last_view_at = Column(DateTime(timezone=True), nullable=True)
    last_updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_blog_post_analytics_score", "engagement_score"),
        Index("idx_blog_post_analytics_views", "total_views"),
    )


class BlogPostDailyStats(Base):
    """Per-post, per-day snapshot for trend charts."""
    __tablename__ = "blog_post_daily_stats"

    id = Column(Integer, primary_key=True)
    post_id = Column(Integer, ForeignKey("blog_posts.id", ondelete="CASCADE"), nullable=False)
    stat_date = Column(Date, nullable=False)

    views = Column(Integer, nullable=False, default=0)
    unique_visitors = Column(Integer, nullable=False, default=0)
    avg_time_on_page = Column(Integer, nullable=False, default=0)
    avg_scroll_depth = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)
    engagement_rate = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)
    total_shares = Column(Integer, nullable=False, default=0)
    newsletter_signups = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("post_id", "stat_date", name="uq_blog_post_daily_stats_post_date"),
        Index("idx_blog_daily_stats_date", "stat_date"),
    )
