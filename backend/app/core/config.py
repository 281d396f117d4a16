"""
Core configuration for the blog analytics backend.
Uses Pydantic Settings for environment variable management.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pydantic import model_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_env_values(cls, data):
        if not isinstance(data, dict):
            return data
        # Hosting platforms sometimes inject empty-string env vars.
        # Treat them as "unset" so typed fields (bool/int/float) don't crash on startup.
        return {key: value for key, value in data.items() if value != ""}

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "postgresql://localhost:5432/blog"

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Auth (tokens are issued elsewhere; we only verify them)
    JWT_SECRET: str = "dev_jwt_secret_change_me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_COOKIE: str = "access_token"

    # Internal admin/ops endpoints (queue status, manual recompute).
    ADMIN_ENABLED: bool = False
    ADMIN_API_TOKEN: str = ""
    # Optional comma-separated IP allowlist for admin requests.
    ADMIN_IP_ALLOWLIST: str = ""

    # Tracking cookies
    VISITOR_COOKIE_NAME: str = "ps_vid"
    SESSION_COOKIE_NAME: str = "ps_sid"
    SOURCE_COOKIE_NAME: str = "ps_src"
    VISITOR_COOKIE_DAYS: int = 30
    # Sliding inactivity window; also the session cookie max-age.
    SESSION_TIMEOUT_MINUTES: int = 30

    # Aggregation queue
    ANALYTICS_QUEUE_ENABLED: bool = True
    ANALYTICS_BATCH_INTERVAL_SECONDS: float = 30.0
    ANALYTICS_MAX_BATCH_SIZE: int = 50
    ANALYTICS_BATCH_CONCURRENCY: int = 5

    # Engagement score weights. Heuristic ranking knobs, not a fitted model.
    ENGAGEMENT_WEIGHT_VIEWS: float = 1.0
    ENGAGEMENT_WEIGHT_AVG_TIME: float = 0.5
    ENGAGEMENT_WEIGHT_SCROLL_100: float = 5.0
    ENGAGEMENT_WEIGHT_SHARES: float = 10.0
    ENGAGEMENT_WEIGHT_NEWSLETTER_SIGNUPS: float = 20.0
    ENGAGEMENT_WEIGHT_CTA_CLICKS: float = 3.0
    ENGAGEMENT_WEIGHT_AVG_SCROLL_DEPTH: float = 0.5

    @property
    def admin_ip_allowlist(self) -> frozenset[str]:
        raw = str(self.ADMIN_IP_ALLOWLIST or "")
        return frozenset(part.strip() for part in raw.split(",") if part.strip())

    @property
    def cookies_secure(self) -> bool:
        return str(self.ENVIRONMENT or "").strip().lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
