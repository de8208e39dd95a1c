"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.

Every external collaborator key is required: the process refuses to start
when one is missing.
"""

from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Companion Booking Platform"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SITE_URL: str = "http://localhost:3000"

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Identity provider (GoTrue) ───────────────────────────
    IDENTITY_URL: str
    IDENTITY_ANON_KEY: str
    IDENTITY_SERVICE_ROLE_KEY: str
    IDENTITY_JWT_SECRET: str
    IDENTITY_JWT_AUDIENCE: str = "authenticated"
    IDENTITY_TIMEOUT_SECONDS: float = 10.0

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str

    # ── Razorpay ─────────────────────────────────────────────
    RAZORPAY_KEY_ID: str
    RAZORPAY_KEY_SECRET: str
    RAZORPAY_WEBHOOK_SECRET: str
    PLATFORM_FEE_PERCENT: float = 15.0
    DEFAULT_CURRENCY: str = "usd"

    # ── Cloudinary (avatar assets) ───────────────────────────
    CLOUDINARY_CLOUD_NAME: str
    CLOUDINARY_API_KEY: str
    CLOUDINARY_API_SECRET: str

    # ── Telemetry ────────────────────────────────────────────
    SENTRY_DSN: str
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    # ── Analytics ────────────────────────────────────────────
    PLAUSIBLE_DOMAIN: str

    # ── Frontend ─────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 20

    # ── Business Config ──────────────────────────────────────
    PAYMENT_RECONCILE_AFTER_MINUTES: int = 10
    MESSAGE_PREVIEW_LENGTH: int = 100

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance; call this everywhere."""
    return Settings()


settings = get_settings()
