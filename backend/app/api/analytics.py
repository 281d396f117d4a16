"""
Blog Analytics API Router (admin)
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.tracking import get_analytics_queue
from app.core.admin_auth import AnalyticsOperator, require_analytics_operator
from app.core.database import get_db
from app.core.time import now_utc
from app.services.engagement import post_exists
from app.services.post_analytics import get_post_analytics, recompute_post_analytics

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/queue/status")
def analytics_queue_status(
    request: Request,
    _operator: AnalyticsOperator = Depends(require_analytics_operator),
):
    queue = get_analytics_queue(request)
    if queue is None:
        return {"enabled": False, "server_time_utc": now_utc().isoformat()}
    return {
        "enabled": True,
        "server_time_utc": now_utc().isoformat(),
        **queue.get_status(),
    }


@router.get("/posts/{post_id}")
def get_blog_post_analytics(
    post_id: int,
    db: Session = Depends(get_db),
    _operator: AnalyticsOperator = Depends(require_analytics_operator),
):
    if not post_exists(db, post_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blog post not found")
    analytics = get_post_analytics(db, post_id)
    return {
        "post_id": post_id,
        "computed": analytics is not None,
        "analytics": analytics,
    }


@router.post("/posts/{post_id}/recompute")
def recompute_blog_post_analytics(
    post_id: int,
    db: Session = Depends(get_db),
    operator: AnalyticsOperator = Depends(require_analytics_operator),
):
    """Recompute one post's aggregates immediately, bypassing the batch queue."""
    if not post_exists(db, post_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blog post not found")
    try:
        recompute_post_analytics(db, post_id)
    except SQLAlchemyError as exc:
        logger.error("Manual analytics recompute failed for post %s: %s", post_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to recompute analytics",
        ) from exc

    logger.info("Analytics for post %s recomputed by %s (%s)", post_id, operator.name, operator.ip)
    return {
        "post_id": post_id,
        "analytics": get_post_analytics(db, post_id),
        "recomputed_by": operator.name,
    }
