"""
Tracking API Router

Page-view and blog engagement ingestion. Both endpoints are fire-and-forget
telemetry for the browser: the page-view tracker never fails the request, and
the engagement tracker only surfaces errors the client can act on.
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.auth import resolve_request_user_id
from app.core.config import settings
from app.core.database import get_db
from app.core.errors import TrackingError, TrackingPersistenceError
from app.services.engagement import record_engagement_event
from app.services.identity import TrackingCookie, TrackingContext
from app.services.payloads import (
    IP_MAX_LEN,
    PATH_MAX_LEN,
    REFERRER_MAX_LEN,
    SOURCE_HINT_MAX_LEN,
    USER_AGENT_MAX_LEN,
    clean_text,
)
from app.services.site_traffic import record_fallback_traffic, record_page_view
from app.services.traffic_source import classify_traffic_source, resolve_request_traffic_source

router = APIRouter()
logger = logging.getLogger(__name__)

# Seconds a client should wait before retrying when cookies have not landed yet.
COOKIE_RETRY_AFTER_SECONDS = 1


class PageViewRequest(BaseModel):
    path: Optional[Any] = Field(default=None)
    pathname: Optional[Any] = Field(default=None)
    referrer: Optional[Any] = Field(default=None)
    source: Optional[Any] = Field(default=None)


class EngagementRequest(BaseModel):
    event_type: Optional[Any] = Field(default=None)
    event_data: Optional[Any] = Field(default=None)
    referrer: Optional[Any] = Field(default=None)
    source: Optional[Any] = Field(default=None)


def get_analytics_queue(request: Request):
    """Queue started by the app lifespan; None when the app runs without one."""
    return getattr(request.app.state, "analytics_queue", None)


def _client_ip(request: Request) -> Optional[str]:
    forwarded = str(request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return clean_text(forwarded, max_len=IP_MAX_LEN)
    host = request.client.host if request.client else None
    return clean_text(host, max_len=IP_MAX_LEN)


def _set_tracking_cookies(response: Response, cookies: list[TrackingCookie]) -> None:
    for cookie in cookies:
        response.set_cookie(
            key=cookie.name,
            value=cookie.value,
            max_age=cookie.max_age,
            httponly=True,
            samesite="lax",
            secure=settings.cookies_secure,
            path="/",
        )


def _http_error(error: TrackingError) -> HTTPException:
    headers = None
    if error.retryable:
        headers = {"Retry-After": str(COOKIE_RETRY_AFTER_SECONDS)}
    return HTTPException(status_code=error.status_code, detail=error.message, headers=headers)


@router.post("")
def track_page_view(
    request: Request,
    response: Response,
    payload: Optional[PageViewRequest] = None,
    db: Session = Depends(get_db),
):
    """Record a site page view. Always answers 200."""
    payload = payload or PageViewRequest()

    # An explicit body referrer (even null) wins over the Referer header.
    if "referrer" in payload.model_fields_set:
        referrer = clean_text(payload.referrer, max_len=REFERRER_MAX_LEN)
    else:
        referrer = clean_text(request.headers.get("referer"), max_len=REFERRER_MAX_LEN)

    path = (
        clean_text(payload.path, max_len=PATH_MAX_LEN)
        or clean_text(payload.pathname, max_len=PATH_MAX_LEN)
        or "/"
    )
    source_hint = clean_text(payload.source, max_len=SOURCE_HINT_MAX_LEN)
    user_agent = clean_text(request.headers.get("user-agent"), max_len=USER_AGENT_MAX_LEN)
    ip = _client_ip(request)
    source = classify_traffic_source(source_hint, referrer)

    try:
        ctx = TrackingContext(
            visitor_cookie=request.cookies.get(settings.VISITOR_COOKIE_NAME),
            session_cookie=request.cookies.get(settings.SESSION_COOKIE_NAME),
            source_cookie=request.cookies.get(settings.SOURCE_COOKIE_NAME),
            user_id=resolve_request_user_id(request, db),
            source=source,
            referrer=referrer,
            path=path,
            user_agent=user_agent,
            ip=ip,
        )
        identity = record_page_view(db, ctx)
    except Exception:
        logger.exception("Track error (falling back to simple traffic log)")
        db.rollback()
        record_fallback_traffic(
            db,
            source=source,
            referrer=referrer,
            path=path,
            user_agent=user_agent,
            ip=ip,
        )
        return {"ok": True}

    _set_tracking_cookies(response, identity.cookies)
    return {"ok": True, "visitor_id": identity.visitor.id, "session_id": identity.session.id}


@router.post("/blog/{post_id}/engagement")
def track_blog_engagement(
    post_id: int,
    request: Request,
    response: Response,
    payload: Optional[EngagementRequest] = None,
    db: Session = Depends(get_db),
):
    payload = payload or EngagementRequest()

    referrer = clean_text(request.headers.get("referer"), max_len=REFERRER_MAX_LEN) or clean_text(
        payload.referrer, max_len=REFERRER_MAX_LEN
    )
    source_cookie = request.cookies.get(settings.SOURCE_COOKIE_NAME)
    traffic_source = resolve_request_traffic_source(
        clean_text(payload.source, max_len=SOURCE_HINT_MAX_LEN),
        source_cookie,
        referrer,
    )
    user_agent = clean_text(request.headers.get("user-agent"), max_len=USER_AGENT_MAX_LEN)
    ip = _client_ip(request)

    try:
        try:
            user_id = resolve_request_user_id(request, db)
        except SQLAlchemyError as e:
            db.rollback()
            raise TrackingPersistenceError("Failed to track engagement") from e

        ctx = TrackingContext(
            visitor_cookie=request.cookies.get(settings.VISITOR_COOKIE_NAME),
            session_cookie=request.cookies.get(settings.SESSION_COOKIE_NAME),
            source_cookie=source_cookie,
            user_id=user_id,
            referrer=referrer,
            user_agent=user_agent,
            ip=ip,
        )
        identity = record_engagement_event(
            db,
            post_id=post_id,
            event_type=payload.event_type,
            event_data=payload.event_data,
            ctx=ctx,
            traffic_source=traffic_source,
            host=request.headers.get("host"),
            queue=get_analytics_queue(request),
        )
    except TrackingPersistenceError as e:
        logger.error("Error tracking engagement for post %s: %s", post_id, e.__cause__ or e)
        record_fallback_traffic(
            db,
            source=traffic_source,
            referrer=referrer,
            path=clean_text(request.url.path, max_len=PATH_MAX_LEN),
            user_agent=user_agent,
            ip=ip,
        )
        raise _http_error(e) from e
    except TrackingError as e:
        if e.retryable:
            logger.debug("Engagement for post %s arrived before tracking cookies", post_id)
        raise _http_error(e) from e

    _set_tracking_cookies(response, identity.cookies)
    return {"success": True, "data": {"tracked": True}}
