"""Configuration settings for the Craftnet backend."""

from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: str
    # New key system (preferred)
    supabase_secret_key: str | None = None  # Backend/admin access
    supabase_publishable_key: str | None = None  # Client/public access
    # Legacy key
    supabase_service_role_key: str | None = None

    # Supabase Auth signs access tokens with the project JWT secret
    supabase_jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # Marketplace rules (NGN)
    min_fixed_price: Decimal = Decimal("3000")
    max_fixed_price: Decimal = Decimal("50000")
    free_plan_monthly_job_limit: int = 3

    # Profile fetch retry
    profile_fetch_attempts: int = 3
    profile_retry_delay_seconds: float = 1.0

    # Storage
    signed_url_expiry_seconds: int = 3600
    max_cv_bytes: int = 10 * 1024 * 1024
    max_evidence_bytes: int = 10 * 1024 * 1024

    # Job alerts
    job_alert_candidate_limit: int = 200
    job_alert_recipient_limit: int = 50

    # Admin dashboard
    recent_activity_limit: int = 10
    recent_activity_per_source: int = 5

    # Sagas older than this are considered stalled by the recovery sweep
    saga_stall_seconds: int = 15 * 60

    # App
    site_url: str = "http://localhost:3000"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
