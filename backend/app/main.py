"""
Blog Analytics - Engagement Tracking
Main FastAPI Application
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from urllib.parse import urlparse

from app.core.config import settings
from app.api.analytics import router as analytics_router
from app.api.tracking import router as tracking_router
from app.services.analytics_queue import AnalyticsQueue
from app.services.post_analytics import recompute_post_analytics_async

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper()))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Blog Analytics API...")
    try:
        db_host = urlparse(getattr(settings, "DATABASE_URL", "")).hostname
        logger.info("Config: db_host=%s env=%s", db_host, settings.ENVIRONMENT)
    except ValueError:
        logger.info("Config: env=%s", settings.ENVIRONMENT)

    queue = None
    if bool(getattr(settings, "ANALYTICS_QUEUE_ENABLED", True)):
        queue = AnalyticsQueue.from_settings(recompute_post_analytics_async)
        await queue.start()
    app.state.analytics_queue = queue
    yield
    if queue is not None:
        # Flush pending recomputations before the process exits.
        await queue.stop(flush=True)
    logger.info("Shutting down Blog Analytics API...")


app = FastAPI(
    title="Blog Analytics API",
    description="Visitor tracking, blog engagement ingestion and per-post analytics",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tracking_router, prefix="/api/track", tags=["tracking"])
app.include_router(analytics_router, prefix="/api/analytics", tags=["analytics"])

