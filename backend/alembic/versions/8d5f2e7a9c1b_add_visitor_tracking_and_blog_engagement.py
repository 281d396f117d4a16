"""add_visitor_tracking_and_blog_engagement

Revision ID: 8d5f2e7a9c1b
Revises: 0c4e8a1f2b3d
Create Date: 2026-09-28

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8d5f2e7a9c1b"
down_revision: Union[str, None] = "0c4e8a1f2b3d"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRAFFIC_SOURCES = "'instagram', 'facebook', 'youtube', 'google', 'twitter', 'direct', 'other'"
EVENT_TYPES = (
    "'view', 'scroll_milestone', 'time_milestone', 'click', 'share', 'comment', 'like', "
    "'bookmark', 'exit', 'cta_click', 'newsletter_signup', 'form_submit', 'copy_link', "
    "'outbound_click', 'internal_click'"
)


def _counter(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), nullable=False, server_default="0")


def _percent(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(5, 2), nullable=False, server_default="0")


def upgrade() -> None:
    op.create_table(
        "visitors",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="other"),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("landing_path", sa.String(length=512), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        _counter("sessions_count"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_visitors_user_id", "visitors", ["user_id"])
    op.create_index("idx_visitors_source", "visitors", ["source"])

    op.create_table(
        "user_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("visitor_id", sa.String(length=36), sa.ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="other"),
        sa.Column("landing_path", sa.String(length=512), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        _counter("page_count"),
    )
    op.create_index("idx_user_sessions_visitor_time", "user_sessions", ["visitor_id", "started_at"])
    op.create_index("idx_user_sessions_user_time", "user_sessions", ["user_id", "started_at"])
    op.create_index("idx_user_sessions_last_seen", "user_sessions", ["last_seen_at"])

    op.create_table(
        "session_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "session_id",
            sa.String(length=36),
            sa.ForeignKey("user_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("path", sa.String(length=512), nullable=False),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_session_events_session_time", "session_events", ["session_id", "occurred_at"])

    op.create_table(
        "traffic_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("path", sa.String(length=512), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
    )
    op.create_index("idx_traffic_events_time", "traffic_events", ["occurred_at"])
    op.create_index("idx_traffic_events_source", "traffic_events", ["source"])

    op.create_table(
        "blog_post_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("blog_posts.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "session_id",
            sa.String(length=36),
            sa.ForeignKey("user_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("visitor_id", sa.String(length=36), sa.ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("entered_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("exited_at", sa.DateTime(timezone=True), nullable=True),
        _counter("time_on_page"),
        sa.Column("max_scroll_depth", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("read_to_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("was_engaged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("clicked_cta", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("shared_content", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("submitted_form", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("traffic_source", sa.String(length=32), nullable=False),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("is_landing_page", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_exit_page", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("session_id", "post_id", name="uq_blog_post_sessions_session_post"),
        sa.CheckConstraint(f"traffic_source IN ({TRAFFIC_SOURCES})", name="valid_traffic_source"),
        sa.CheckConstraint("max_scroll_depth >= 0 AND max_scroll_depth <= 100", name="valid_scroll_depth"),
    )
    op.create_index("idx_blog_post_sessions_post", "blog_post_sessions", ["post_id", "entered_at"])
    op.create_index("idx_blog_post_sessions_source", "blog_post_sessions", ["post_id", "traffic_source"])

    op.create_table(
        "blog_engagement_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("blog_posts.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "session_id",
            sa.String(length=36),
            sa.ForeignKey("user_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("visitor_id", sa.String(length=36), sa.ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(f"event_type IN ({EVENT_TYPES})", name="valid_engagement_event_type"),
    )
    op.create_index("idx_blog_engagement_post_time", "blog_engagement_events", ["post_id", "occurred_at"])
    op.create_index("idx_blog_engagement_session", "blog_engagement_events", ["session_id", "occurred_at"])
    op.create_index("idx_blog_engagement_type", "blog_engagement_events", ["event_type", "post_id"])

    op.create_table(
        "blog_post_analytics",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("blog_posts.id", ondelete="CASCADE"), nullable=False),
        _counter("total_views"),
        _counter("unique_visitors"),
        _counter("avg_time_on_page"),
        _counter("median_time_on_page"),
        _counter("total_time_spent"),
        _percent("avg_scroll_depth"),
        _counter("scroll_25_percent"),
        _counter("scroll_50_percent"),
        _counter("scroll_75_percent"),
        _counter("scroll_100_percent"),
        _counter("total_clicks"),
        _counter("cta_clicks"),
        _counter("outbound_clicks"),
        _counter("internal_links_clicked"),
        _counter("total_shares"),
        _counter("twitter_shares"),
        _counter("facebook_shares"),
        _counter("linkedin_shares"),
        _counter("copy_link_count"),
        _counter("comments_count"),
        _counter("likes_count"),
        _counter("bookmarks_count"),
        _percent("bounce_rate"),
        _percent("exit_rate"),
        _counter("source_direct"),
        _counter("source_google"),
        _counter("source_instagram"),
        _counter("source_facebook"),
        _counter("source_youtube"),
        _counter("source_twitter"),
        _counter("source_other"),
        _counter("newsletter_signups"),
        _counter("form_submissions"),
        sa.Column("engagement_score", sa.Numeric(10, 2), nullable=False, server_default="0"),
        _percent("engagement_rate"),
        sa.Column("first_view_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_view_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("post_id", name="uq_blog_post_analytics_post_id"),
    )
    op.create_index("idx_blog_post_analytics_score", "blog_post_analytics", ["engagement_score"])
    op.create_index("idx_blog_post_analytics_views", "blog_post_analytics", ["total_views"])

    op.create_table(
        "blog_post_daily_stats",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("blog_posts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("stat_date", sa.Date(), nullable=False),
        _counter("views"),
        _counter("unique_visitors"),
        _counter("avg_time_on_page"),
        _percent("avg_scroll_depth"),
        _percent("engagement_rate"),
        _counter("total_shares"),
        _counter("newsletter_signups"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("post_id", "stat_date", name="uq_blog_post_daily_stats_post_date"),
    )
    op.create_index("idx_blog_daily_stats_date", "blog_post_daily_stats", ["stat_date"])


def downgrade() -> None:
    op.drop_index("idx_blog_daily_stats_date", table_name="blog_post_daily_stats")
    op.drop_table("blog_post_daily_stats")

    op.drop_index("idx_blog_post_analytics_views", table_name="blog_post_analytics")
    op.drop_index("idx_blog_post_analytics_score", table_name="blog_post_analytics")
    op.drop_table("blog_post_analytics")

    op.drop_index("idx_blog_engagement_type", table_name="blog_engagement_events")
    op.drop_index("idx_blog_engagement_session", table_name="blog_engagement_events")
    op.drop_index("idx_blog_engagement_post_time", table_name="blog_engagement_events")
    op.drop_table("blog_engagement_events")

    op.drop_index("idx_blog_post_sessions_source", table_name="blog_post_sessions")
    op.drop_index("idx_blog_post_sessions_post", table_name="blog_post_sessions")
    op.drop_table("blog_post_sessions")

    op.drop_index("idx_traffic_events_source", table_name="traffic_events")
    op.drop_index("idx_traffic_events_time", table_name="traffic_events")
    op.drop_table("traffic_events")

    op.drop_index("idx_session_events_session_time", table_name="session_events")
    op.drop_table("session_events")

    op.drop_index("idx_user_sessions_last_seen", table_name="user_sessions")
    op.drop_index("idx_user_sessions_user_time", table_name="user_sessions")
    op.drop_index("idx_user_sessions_visitor_time", table_name="user_sessions")
    op.drop_table("user_sessions")

    op.drop_index("idx_visitors_source", table_name="visitors")
    op.drop_index("idx_visitors_user_id", table_name="visitors")
    op.drop_table("visitors")
