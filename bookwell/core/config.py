"""
Application configuration.
Values are read from environment variables / .env file through
pydantic-settings. Scheduling cadences and deadline windows live here so the
sweeper and the lifecycle rules can be tuned per deployment.
"""
import logging
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    APP_ENV: str = "development"
    DATABASE_URL: str = "sqlite+aiosqlite:///./bookwell.db"
    JWT_SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"

    # Twilio (notification delivery)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""

    # Stripe (refunds / payment cancellation)
    STRIPE_API_KEY: str = ""

    # Slot generation
    SLOT_STEP_MINUTES: int = 30
    PROVIDER_DEFAULT_UTC_OFFSET_MINUTES: int = 300  # UTC+5

    # Lifecycle windows
    NEAR_TERM_HOURS: int = 24
    CONFIRMATION_GRACE_HOURS: int = 1
    PAYMENT_WINDOW_HOURS: int = 24
    REMINDER_LEAD_HOURS: int = 24

    # Sweeper cadence (seconds)
    SWEEPER_ENABLED: bool = True
    CONFIRMATION_SWEEP_SECONDS: int = 300
    PAYMENT_SWEEP_SECONDS: int = 3600
    COMPLETION_SWEEP_SECONDS: int = 300
    REMINDER_SWEEP_SECONDS: int = 3600
    SWEEP_JITTER_SECONDS: int = 0
    TICKER_POLL_SECONDS: float = 1.0

    # Upper bound for a single refund / notification call
    SIDE_EFFECT_TIMEOUT_SECONDS: float = 10.0

    SEED_DEMO_DATA: bool = False

    class Config:
        env_file = ".env"


settings = Settings()

if settings.APP_ENV == "production" and not settings.JWT_SECRET_KEY:
    raise ValueError(
        "JWT_SECRET_KEY is not set. It must exist as a JWT_SECRET_KEY environment variable "
        "when APP_ENV=production. "
        "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
    )
if not settings.JWT_SECRET_KEY:
    logger.warning("JWT_SECRET_KEY not configured; bearer tokens cannot be verified")
