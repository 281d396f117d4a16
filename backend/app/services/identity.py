"""
Visitor / session identity resolution.

A visitor is a 30-day cookie identity; a session is a 30-minute sliding window
of activity belonging to a visitor. Both are created on demand from request
cookies. Callers own the transaction: nothing here commits.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.core.auth import is_valid_uuid
from app.core.config import settings
from app.core.database import conflict_insert
from app.core.time import ensure_utc, now_utc
from app.models.models import User, UserSession, Visitor
from app.services.traffic_source import OTHER, is_known_source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackingContext:
    """Everything identity resolution needs from one request."""

    visitor_cookie: Optional[str] = None
    session_cookie: Optional[str] = None
    source_cookie: Optional[str] = None
    user_id: Optional[str] = None
    # Source for a brand-new session; None inherits the visitor's first-touch source.
    source: Optional[str] = None
    referrer: Optional[str] = None
    path: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None

    @property
    def has_tracking_cookies(self) -> bool:
        return bool(self.visitor_cookie) and bool(self.session_cookie)


@dataclass(frozen=True)
class TrackingCookie:
    name: str
    value: str
    max_age: int


@dataclass
class ResolvedIdentity:
    visitor: Visitor
    session: UserSession
    cookies: list[TrackingCookie] = field(default_factory=list)
    visitor_created: bool = False
    session_created: bool = False


def session_timeout() -> timedelta:
    minutes = int(getattr(settings, "SESSION_TIMEOUT_MINUTES", 30) or 30)
    return timedelta(minutes=max(1, minutes))


def is_session_active(
    session: Optional[UserSession],
    now: datetime,
    *,
    timeout: Optional[timedelta] = None,
) -> bool:
    """A session is active while not ended and last seen within the inactivity window."""
    if session is None or session.ended_at is not None:
        return False
    last_seen = ensure_utc(session.last_seen_at)
    if last_seen is None:
        return False
    window = timeout if timeout is not None else session_timeout()
    return ensure_utc(now) - last_seen <= window


class IdentityResolver:
    """Resolves (and persists) the visitor and active session behind a request."""

    def _visitor_cookie(self, value: str) -> TrackingCookie:
        days = int(getattr(settings, "VISITOR_COOKIE_DAYS", 30) or 30)
        return TrackingCookie(settings.VISITOR_COOKIE_NAME, value, days * 24 * 60 * 60)

    def _source_cookie(self, value: str) -> TrackingCookie:
        days = int(getattr(settings, "VISITOR_COOKIE_DAYS", 30) or 30)
        return TrackingCookie(settings.SOURCE_COOKIE_NAME, value, days * 24 * 60 * 60)

    def _session_cookie(self, value: str) -> TrackingCookie:
        return TrackingCookie(
            settings.SESSION_COOKIE_NAME,
            value,
            int(session_timeout().total_seconds()),
        )

    def resolve(self, db: Session, ctx: TrackingContext, *, now: Optional[datetime] = None) -> ResolvedIdentity:
        now = now or now_utc()
        visitor, cookies, visitor_created = self.resolve_visitor(db, ctx, now=now)
        if ctx.user_id:
            self.backfill_user_first_touch(db, ctx.user_id, visitor=visitor, ctx=ctx)
        session, session_cookies, session_created = self.resolve_session(db, ctx, visitor, now=now)
        return ResolvedIdentity(
            visitor=visitor,
            session=session,
            cookies=cookies + session_cookies,
            visitor_created=visitor_created,
            session_created=session_created,
        )

    def resolve_visitor(
        self,
        db: Session,
        ctx: TrackingContext,
        *,
        now: datetime,
    ) -> tuple[Visitor, list[TrackingCookie], bool]:
        cookies: list[TrackingCookie] = []
        source_cookie = ctx.source_cookie if is_known_source(ctx.source_cookie) else None
        first_touch_source = source_cookie or ctx.source or OTHER

        if is_valid_uuid(ctx.visitor_cookie):
            visitor_id = str(ctx.visitor_cookie)
            visitor = db.get(Visitor, visitor_id)
            created = False
            if visitor is None:
                # Store was reset under a live cookie; keep the same id for continuity.
                stmt = (
                    conflict_insert(db, Visitor)
                    .values(
                        id=visitor_id,
                        user_id=ctx.user_id,
                        source=first_touch_source,
                        referrer=ctx.referrer,
                        landing_path=ctx.path,
                        first_seen_at=now,
                        last_seen_at=now,
                        sessions_count=0,
                    )
                    .on_conflict_do_nothing(index_elements=["id"])
                )
                db.execute(stmt)
                visitor = db.get(Visitor, visitor_id)
                created = True
                logger.info("Recreated missing visitor %s from cookie", visitor_id)
            else:
                db.execute(
                    update(Visitor)
                    .where(Visitor.id == visitor_id)
                    .values(
                        last_seen_at=now,
                        user_id=func.coalesce(Visitor.user_id, ctx.user_id),
                    )
                    .execution_options(synchronize_session=False)
                )
                db.refresh(visitor)

            if not source_cookie:
                cookies.append(self._source_cookie(visitor.source))
            cookies.append(self._visitor_cookie(visitor.id))
            return visitor, cookies, created

        visitor = Visitor(
            id=str(uuid.uuid4()),
            user_id=ctx.user_id,
            source=first_touch_source,
            referrer=ctx.referrer,
            landing_path=ctx.path,
            first_seen_at=now,
            last_seen_at=now,
            sessions_count=0,
        )
        db.add(visitor)
        db.flush()
        cookies.append(self._visitor_cookie(visitor.id))
        if not source_cookie:
            cookies.append(self._source_cookie(visitor.source))
        return visitor, cookies, True

    def resolve_session(
        self,
        db: Session,
        ctx: TrackingContext,
        visitor: Visitor,
        *,
        now: datetime,
    ) -> tuple[UserSession, list[TrackingCookie], bool]:
        existing = db.get(UserSession, str(ctx.session_cookie)) if is_valid_uuid(ctx.session_cookie) else None

        if existing is not None and is_session_active(existing, now):
            # Sessions follow whoever is signed in now; only the visitor link is first-write-wins.
            if ctx.user_id and existing.user_id != ctx.user_id:
                existing.user_id = ctx.user_id
            existing.last_seen_at = now
            db.flush()
            return existing, [self._session_cookie(existing.id)], False

        if existing is not None and existing.ended_at is None:
            existing.ended_at = existing.last_seen_at
            logger.debug("Ended stale session %s (last seen %s)", existing.id, existing.last_seen_at)

        session = UserSession(
            id=str(uuid.uuid4()),
            visitor_id=visitor.id,
            user_id=ctx.user_id,
            source=ctx.source or visitor.source or OTHER,
            landing_path=ctx.path or visitor.landing_path,
            user_agent=ctx.user_agent,
            ip=ctx.ip,
            started_at=now,
            last_seen_at=now,
            page_count=0,
        )
        db.add(session)
        visitor.sessions_count = int(visitor.sessions_count or 0) + 1
        db.flush()
        return session, [self._session_cookie(session.id)], True

    def backfill_user_first_touch(
        self,
        db: Session,
        user_id: str,
        *,
        visitor: Visitor,
        ctx: TrackingContext,
    ) -> None:
        """Fill the user's acquisition fields once; later sessions never overwrite them."""
        db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                source=func.coalesce(User.source, visitor.source or ctx.source or OTHER),
                referrer=func.coalesce(User.referrer, visitor.referrer or ctx.referrer),
                landing_path=func.coalesce(User.landing_path, visitor.landing_path or ctx.path),
            )
            .execution_options(synchronize_session=False)
        )


identity_resolver = IdentityResolver()
