"""
Blog engagement event recording.

Each tracked action updates the (session, post) engagement record and appends a
raw event, in one transaction. Progress fields on the engagement record are
watermarks: later events can raise them, never lower or clear them, so
out-of-order milestone delivery is harmless.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Optional, Protocol

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.database import conflict_insert
from app.core.errors import (
    PostNotFoundError,
    TrackingPersistenceError,
    TrackingValidationError,
)
from app.core.time import now_utc
from app.models.models import BlogEngagementEvent, BlogPost, BlogPostSession
from app.services.identity import (
    IdentityResolver,
    ResolvedIdentity,
    TrackingContext,
    identity_resolver,
)
from app.services.payloads import clean_event_data, payload_number

logger = logging.getLogger(__name__)

ENGAGEMENT_EVENT_TYPES = frozenset(
    {
        "view",
        "scroll_milestone",
        "time_milestone",
        "exit",
        "cta_click",
        "share",
        "comment",
        "like",
        "bookmark",
        "copy_link",
        "newsletter_signup",
        "form_submit",
        "outbound_click",
        "internal_click",
    }
)
# Conversion-like actions that always count as engagement.
ENGAGING_EVENT_TYPES = frozenset({"cta_click", "share", "form_submit", "newsletter_signup"})

SCROLL_ENGAGED_DEPTH = 25
READ_TO_END_DEPTH = 100
# Upper bound for reported time on page; keeps watermarks inside an INTEGER column.
MAX_TRACKED_SECONDS = 24 * 60 * 60
TIME_ENGAGED_SECONDS = 30


class AnalyticsEnqueuer(Protocol):
    def enqueue(self, post_id: int) -> None: ...


@dataclass(frozen=True)
class EngagementState:
    """Mutable-by-event fields of a blog post session."""

    time_on_page: int = 0
    max_scroll_depth: float = 0.0
    read_to_end: bool = False
    was_engaged: bool = False
    clicked_cta: bool = False
    shared_content: bool = False
    submitted_form: bool = False
    is_exit_page: bool = False
    exited_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: BlogPostSession) -> "EngagementState":
        return cls(
            time_on_page=int(row.time_on_page or 0),
            max_scroll_depth=float(row.max_scroll_depth or 0),
            read_to_end=bool(row.read_to_end),
            was_engaged=bool(row.was_engaged),
            clicked_cta=bool(row.clicked_cta),
            shared_content=bool(row.shared_content),
            submitted_form=bool(row.submitted_form),
            is_exit_page=bool(row.is_exit_page),
            exited_at=row.exited_at,
        )

    def apply_to(self, row: BlogPostSession) -> None:
        row.time_on_page = self.time_on_page
        row.max_scroll_depth = self.max_scroll_depth
        row.read_to_end = self.read_to_end
        row.was_engaged = self.was_engaged
        row.clicked_cta = self.clicked_cta
        row.shared_content = self.shared_content
        row.submitted_form = self.submitted_form
        row.is_exit_page = self.is_exit_page
        row.exited_at = self.exited_at


def _tracked_seconds(data: dict[str, Any], key: str) -> int:
    return int(min(MAX_TRACKED_SECONDS, max(0.0, payload_number(data, key))))


def apply_engagement_event(
    state: EngagementState,
    event_type: str,
    event_data: Optional[dict[str, Any]] = None,
    *,
    now: Optional[datetime] = None,
) -> EngagementState:
    """Return the state after one event. Pure: never lowers a watermark or clears a flag."""
    data = event_data or {}

    if event_type == "scroll_milestone":
        depth = min(100.0, max(0.0, payload_number(data, "depth")))
        return replace(
            state,
            max_scroll_depth=max(state.max_scroll_depth, depth),
            read_to_end=state.read_to_end or depth >= READ_TO_END_DEPTH,
            was_engaged=state.was_engaged or depth >= SCROLL_ENGAGED_DEPTH,
        )

    if event_type == "time_milestone":
        seconds = _tracked_seconds(data, "seconds")
        return replace(
            state,
            time_on_page=max(state.time_on_page, seconds),
            was_engaged=state.was_engaged or seconds >= TIME_ENGAGED_SECONDS,
        )

    if event_type == "exit":
        seconds = _tracked_seconds(data, "time_on_page")
        return replace(
            state,
            time_on_page=max(state.time_on_page, seconds),
            exited_at=now or now_utc(),
            is_exit_page=True,
        )

    if event_type in ENGAGING_EVENT_TYPES:
        return replace(
            state,
            clicked_cta=state.clicked_cta or event_type == "cta_click",
            shared_content=state.shared_content or event_type == "share",
            submitted_form=state.submitted_form or event_type in ("form_submit", "newsletter_signup"),
            was_engaged=True,
        )

    return state


def normalize_event_type(value: Any) -> str:
    event_type = str(value or "").strip().lower()
    if not event_type:
        raise TrackingValidationError("Event type is required")
    if event_type not in ENGAGEMENT_EVENT_TYPES:
        raise TrackingValidationError("Unsupported event type")
    return event_type


def is_landing_referrer(referrer: Optional[str], host: Optional[str]) -> bool:
    """True unless the referrer points back at our own host (internal navigation)."""
    if not referrer:
        return True
    if not host:
        return True
    return host.lower() not in referrer.lower()


def post_exists(db: Session, post_id: int) -> bool:
    row = (
        db.query(BlogPost.id)
        .filter(BlogPost.id == post_id, BlogPost.deleted_at.is_(None))
        .first()
    )
    return row is not None


def _upsert_view(
    db: Session,
    *,
    post_id: int,
    identity: ResolvedIdentity,
    traffic_source: str,
    referrer: Optional[str],
    is_landing_page: bool,
    now: datetime,
) -> None:
    stmt = conflict_insert(db, BlogPostSession).values(
        post_id=post_id,
        session_id=identity.session.id,
        visitor_id=identity.visitor.id,
        user_id=identity.session.user_id,
        entered_at=now,
        traffic_source=traffic_source,
        referrer=referrer,
        is_landing_page=is_landing_page,
        time_on_page=0,
        max_scroll_depth=0,
        read_to_end=False,
        was_engaged=False,
        clicked_cta=False,
        shared_content=False,
        submitted_form=False,
        is_exit_page=False,
    )
    # Repeat views keep the original entry; only a missing user link is filled in.
    stmt = stmt.on_conflict_do_update(
        index_elements=["session_id", "post_id"],
        set_={"user_id": func.coalesce(BlogPostSession.user_id, stmt.excluded.user_id)},
    )
    db.execute(stmt)


def record_engagement_event(
    db: Session,
    *,
    post_id: int,
    event_type: Any,
    event_data: Any,
    ctx: TrackingContext,
    traffic_source: str,
    host: Optional[str] = None,
    queue: Optional[AnalyticsEnqueuer] = None,
    resolver: Optional[IdentityResolver] = None,
    now: Optional[datetime] = None,
) -> ResolvedIdentity:
    """Record one engagement event for a post.

    Raises TrackingValidationError (missing/unknown event type, missing tracking
    cookies), PostNotFoundError, or TrackingPersistenceError after rolling back.
    """
    normalized_type = normalize_event_type(event_type)
    if not ctx.has_tracking_cookies:
        # Cookies are set by the page-view tracker and may not have landed yet.
        raise TrackingValidationError("Tracking cookies not found", retryable=True)

    data = clean_event_data(event_data)
    now = now or now_utc()
    resolver = resolver or identity_resolver

    try:
        if not post_exists(db, post_id):
            raise PostNotFoundError(post_id)

        identity = resolver.resolve(db, ctx, now=now)

        if normalized_type == "view":
            _upsert_view(
                db,
                post_id=post_id,
                identity=identity,
                traffic_source=traffic_source,
                referrer=ctx.referrer,
                is_landing_page=is_landing_referrer(ctx.referrer, host),
                now=now,
            )

        row = (
            db.query(BlogPostSession)
            .filter(
                BlogPostSession.session_id == identity.session.id,
                BlogPostSession.post_id == post_id,
            )
            .with_for_update()
            .populate_existing()
            .first()
        )
        if row is not None:
            updated = apply_engagement_event(EngagementState.from_row(row), normalized_type, data, now=now)
            updated.apply_to(row)

        db.add(
            BlogEngagementEvent(
                post_id=post_id,
                session_id=identity.session.id,
                visitor_id=identity.visitor.id,
                user_id=identity.session.user_id,
                event_type=normalized_type,
                event_data=data,
                occurred_at=now,
            )
        )
        db.commit()
    except PostNotFoundError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        raise TrackingPersistenceError("Failed to track engagement") from e

    if queue is not None:
        queue.enqueue(post_id)
    return identity
