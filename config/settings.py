"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
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
    APP_NAME: str = "NextDrive Bihar API"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"

    # ── OAuth2 - Google ──────────────────────────────────────
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REDIRECT_URI: str = "http://localhost:8000/auth/google/callback"

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "nextdrive-bihar"
    JWT_AUDIENCE: str = "nextdrive-users"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    # ── Email verification (OTP) ─────────────────────────────
    OTP_LENGTH: int = 6
    OTP_EXPIRE_MINUTES: int = 10
    OTP_RESEND_INTERVAL_SECONDS: int = 60
    OTP_MAX_RESENDS_PER_WINDOW: int = 5
    OTP_RESEND_WINDOW_SECONDS: int = 3600

    # ── Email ────────────────────────────────────────────────
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@nextdrivebihar.com"
    EMAIL_FROM_NAME: str = "NextDrive Bihar"
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    # ── S3-compatible Image Storage ──────────────────────────
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_BUCKET_PUBLIC: str = "nextdrive-public"
    S3_ENDPOINT_URL: str = ""
    S3_REGION: str = "auto"
    S3_PUBLIC_BASE_URL: str = ""
    STORAGE_AVATAR_FOLDER: str = "nextdrive/avatars"
    STORAGE_TOUR_FOLDER: str = "nextdrive/tours"
    MAX_IMAGE_SIZE_MB: int = 5

    # ── Frontend ─────────────────────────────────────────────
    FRONTEND_URL: str = "http://localhost:5173"
    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 60

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def google_oauth_enabled(self) -> bool:
        return bool(self.GOOGLE_CLIENT_ID and self.GOOGLE_CLIENT_SECRET)

    @property
    def storage_public_base_url(self) -> str:
        if self.S3_PUBLIC_BASE_URL:
            return self.S3_PUBLIC_BASE_URL.rstrip("/")
        return f"{self.S3_ENDPOINT_URL.rstrip('/')}/{self.S3_BUCKET_PUBLIC}"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance, built once per process."""
    return Settings()


settings = get_settings()
