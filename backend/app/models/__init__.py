"""Database models."""
from app.models.models import (
    User,
    BlogPost,
    Visitor,
    UserSession,
    SessionEvent,
    TrafficEvent,
    BlogPostSession,
    BlogEngagementEvent,
    BlogPostAnalytics,
    BlogPostDailyStats,
)

__all__ = [
    "User",
    "BlogPost",
    "Visitor",
    "UserSession",
    "SessionEvent",
    "TrafficEvent",
    "BlogPostSession",
    "BlogEngagementEvent",
    "BlogPostAnalytics",
    "BlogPostDailyStats",
]
