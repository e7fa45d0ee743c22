"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "CourtSlot"
    debug: bool = True
    secret_key: str = "dev-secret-change-in-production"
    api_prefix: str = "/api/v1"
    timezone: str = "Asia/Kolkata"

    # Database
    database_url: str = "postgresql+asyncpg://courtslot:courtslot@db:5432/courtslot"
    database_echo: bool = False

    # Redis (Celery broker for maintenance jobs)
    redis_url: str = "redis://redis:6379/0"

    # Auth (tokens are issued by the identity service, we only verify them)
    access_token_expire_minutes: int = 60
    jwt_algorithm: str = "HS256"

    # Email / SMTP
    smtp_host: str = "localhost"
    smtp_port: int = 1025
    smtp_from: str = "noreply@courtslot.in"

    # Quota gate. Owners who predate subscriptions have no subscription row;
    # when True they are treated as unrestricted.
    quota_allow_without_subscription: bool = True

    # Booking lifecycle
    pending_booking_ttl_hours: int = 24

    # Slot generation
    default_slot_price_paise: int = 100_000
    slot_day_start_hour: int = 6
    slot_day_end_hour: int = 23

    model_config = {"env_prefix": "CS_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
