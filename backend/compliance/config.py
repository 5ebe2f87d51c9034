"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "Compliance_Reminders"
    ENV: str = "development"
    DEBUG: bool = True
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Database
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # Reminder sweep
    REMINDER_SWEEP_INTERVAL_SECONDS: int = 300
    REMINDER_SWEEP_BATCH_SIZE: int = 50
    # A claimed job is considered abandoned after this long (crashed worker).
    REMINDER_CLAIM_LEASE_SECONDS: int = 600
    REMINDER_RESUME_GRACE_MINUTES: int = 60
    REMINDER_DEFAULT_MAX_ATTEMPTS: int = 5
    # Notifier failures in a row before a job is parked in "paused".
    REMINDER_MAX_CONSECUTIVE_FAILURES: int = 10
    MONTHLY_REFRESH_DAYS: str = "3,10,17,24"

    # Validity
    VALIDITY_EXPIRING_LEAD_DAYS: int = 30
    VALIDITY_SWEEP_INTERVAL_SECONDS: int = 3600

    # Outbound email (transactional mail API)
    EMAIL_API_URL: str = "https://api.resend.com/emails"
    EMAIL_API_KEY: str | None = None
    EMAIL_FROM: str = "Compliance <noreply@example.com>"
    EMAIL_TIMEOUT_SECONDS: int = 10
    PUBLIC_APP_URL: str = "http://localhost:5173"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def monthly_refresh_days(self) -> tuple[int, ...]:
        """Get monthly refresh calendar days as tuple."""
        return tuple(int(day.strip()) for day in self.MONTHLY_REFRESH_DAYS.split(",") if day.strip())


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
