"""
Site-wide page-view tracking.

The simpler sibling of engagement recording: resolves identity, appends a
navigation event to the session and a row to the lightweight traffic log used
by the overview dashboards.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.time import now_utc
from app.models.models import SessionEvent, TrafficEvent
from app.services.identity import (
    IdentityResolver,
    ResolvedIdentity,
    TrackingContext,
    identity_resolver,
)
from app.services.traffic_source import OTHER

logger = logging.getLogger(__name__)


def record_page_view(
    db: Session,
    ctx: TrackingContext,
    *,
    resolver: Optional[IdentityResolver] = None,
    now: Optional[datetime] = None,
) -> ResolvedIdentity:
    """Record a page view. Rolls back and re-raises on any persistence failure."""
    now = now or now_utc()
    resolver = resolver or identity_resolver
    path = ctx.path or "/"

    try:
        identity = resolver.resolve(db, ctx, now=now)

        db.add(
            SessionEvent(
                session_id=identity.session.id,
                path=path,
                referrer=ctx.referrer,
                occurred_at=now,
            )
        )
        identity.session.page_count = int(identity.session.page_count or 0) + 1
        identity.session.last_seen_at = now
        identity.visitor.last_seen_at = now

        db.add(
            TrafficEvent(
                occurred_at=now,
                source=ctx.source or OTHER,
                referrer=ctx.referrer,
                path=path,
                user_agent=ctx.user_agent,
                ip=ctx.ip,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return identity


def record_fallback_traffic(
    db: Session,
    *,
    source: Optional[str],
    referrer: Optional[str],
    path: Optional[str],
    user_agent: Optional[str] = None,
    ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Best-effort anonymous traffic row after full tracking failed.

    Never raises: tracking must not break the page. Returns whether the row was written.
    """
    try:
        db.add(
            TrafficEvent(
                occurred_at=now or now_utc(),
                source=source or OTHER,
                referrer=referrer,
                path=path or "/",
                user_agent=user_agent,
                ip=ip,
            )
        )
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.warning("Failed fallback traffic_events insert: %s", e)
        try:
            db.rollback()
        except SQLAlchemyError as rollback_error:
            logger.warning("Rollback after fallback insert failure also failed: %s", rollback_error)
        return False
