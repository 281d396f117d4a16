"""API router exports."""
from app.api.analytics import router as analytics
from app.api.tracking import router as tracking
