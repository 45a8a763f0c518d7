"""
Core application configuration using Pydantic Settings.

All environment variables are loaded here and validated.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App Configuration
    APP_NAME: str = "FloWorx"
    APP_URL: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Database
    DATABASE_URL: str

    # Security & Encryption
    SECRET_KEY: str  # For JWT signing
    ENCRYPTION_KEY: str  # For Fernet token encryption (44-char base64)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    PASSWORD_RESET_TOKEN_TTL_MINUTES: int = 60
    BCRYPT_ROUNDS: int = 12

    # OAuth - Google
    GOOGLE_CLIENT_ID: str
    GOOGLE_CLIENT_SECRET: str
    GOOGLE_REDIRECT_URI: Optional[str] = None

    # OAuth - Microsoft 365 (folder provisioning not supported yet)
    MICROSOFT_CLIENT_ID: Optional[str] = None
    MICROSOFT_CLIENT_SECRET: Optional[str] = None
    MICROSOFT_REDIRECT_URI: Optional[str] = None

    # Postmark Email
    POSTMARK_API_KEY: Optional[str] = None
    POSTMARK_FROM_EMAIL: str = "noreply@floworx-iq.com"
    EMAIL_SEND_TIMEOUT_SECONDS: float = 10.0

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Celery
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None

    # Sentry Monitoring
    SENTRY_DSN: Optional[str] = None

    # Rate Limiting (login, registration, password reset)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: Optional[str] = None

    # Mailbox provider calls
    PROVIDER_TIMEOUT_SECONDS: float = 15.0
    PROVIDER_MAX_RETRIES: int = 3

    # Query monitoring (alert rules and cleanup run every interval)
    MONITORING_INTERVAL_SECONDS: float = 30.0
    MONITORING_SLOW_QUERY_MS: float = 1000
    MONITORING_CRITICAL_QUERY_MS: float = 3000
    MONITORING_HIGH_CONNECTION_COUNT: int = 20
    MONITORING_ERROR_RATE: float = 0.05

    # Workflow engine (receives the onboarding-completed hand-off)
    WORKFLOW_ENGINE_URL: Optional[str] = None
    WORKFLOW_ENGINE_API_KEY: Optional[str] = None
    WORKFLOW_ENGINE_TIMEOUT_SECONDS: float = 30.0

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Set Celery URLs to Redis if not explicitly set
        if not self.CELERY_BROKER_URL:
            self.CELERY_BROKER_URL = self.REDIS_URL
        if not self.CELERY_RESULT_BACKEND:
            self.CELERY_RESULT_BACKEND = self.REDIS_URL
        if not self.RATE_LIMIT_STORAGE_URI:
            self.RATE_LIMIT_STORAGE_URI = self.REDIS_URL
        # Set Google redirect URI if not set
        if not self.GOOGLE_REDIRECT_URI:
            self.GOOGLE_REDIRECT_URI = f"{self.APP_URL}/api/oauth/gmail/callback"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def monitoring_thresholds(self) -> dict:
        """Keyword arguments for QueryMonitor.update_thresholds()."""
        return {
            "slow_query_ms": self.MONITORING_SLOW_QUERY_MS,
            "critical_query_ms": self.MONITORING_CRITICAL_QUERY_MS,
            "high_connection_count": self.MONITORING_HIGH_CONNECTION_COUNT,
            "error_rate": self.MONITORING_ERROR_RATE,
        }

    @property
    def is_sqlite(self) -> bool:
        """SQLite (tests, local dev) does not accept pool sizing arguments."""
        return self.DATABASE_URL.startswith("sqlite")


# Global settings instance
settings = Settings()
