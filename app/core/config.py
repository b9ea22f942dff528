"""
app/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (DB URI, Twilio credentials, reminder windows)
- Validates configuration on startup
- Environment-specific settings
"""

from pydantic import Field, validator
from pydantic_settings import BaseSettings
from typing import Optional, Literal


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # MongoDB
    MONGODB_URL: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    MONGODB_DB_NAME: str = Field(
        default="shiftconfirm",
        description="MongoDB database name"
    )

    # Twilio SMS gateway
    TWILIO_ACCOUNT_SID: Optional[str] = Field(
        default=None,
        description="Twilio account SID"
    )
    TWILIO_AUTH_TOKEN: Optional[str] = Field(
        default=None,
        description="Twilio auth token (also used for webhook signatures)"
    )
    TWILIO_FROM_NUMBER: Optional[str] = Field(
        default=None,
        description="Reminder sender number in E.164 format"
    )
    TWILIO_BASE_URL: str = Field(
        default="https://api.twilio.com/2010-04-01",
        description="Twilio REST API base URL"
    )
    TWILIO_STATUS_CALLBACK_URL: Optional[str] = Field(
        default=None,
        description="Public URL Twilio posts delivery status updates to"
    )
    TWILIO_VALIDATE_SIGNATURE: bool = Field(
        default=False,
        description="Reject webhooks without a valid X-Twilio-Signature"
    )

    # Outbound send policy
    SMS_SEND_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for a single gateway request"
    )
    SMS_MAX_ATTEMPTS: int = Field(
        default=3,
        description="Attempts per message for transient gateway errors"
    )
    SMS_RETRY_BACKOFF_SECONDS: float = Field(
        default=1.0,
        description="Initial backoff between send attempts (doubles each retry)"
    )

    # Reminder scheduling
    REMINDER_ENABLED: bool = Field(
        default=True,
        description="Run the periodic reminder scheduler"
    )
    REMINDER_INTERVAL_MINUTES: float = Field(
        default=15,
        description="Minutes between reminder cycles"
    )
    REMINDER_MAX_RETRIES: int = Field(
        default=3,
        description="Retries for a failed reminder cycle"
    )
    REMINDER_RETRY_DELAY_MINUTES: float = Field(
        default=5,
        description="Minutes between cycle retries"
    )
    REMINDER_NIGHT_BEFORE_TIME: str = Field(
        default="19:00",
        description="Local time (HH:MM) for the night-before reminder"
    )
    REMINDER_DAY_OF_TIME: str = Field(
        default="07:00",
        description="Local time (HH:MM) for the day-of reminder"
    )
    REMINDER_TIMEZONE: str = Field(
        default="America/Denver",
        description="IANA timezone for shift dates and times"
    )
    REMINDER_SEND_SPACING_SECONDS: float = Field(
        default=0.2,
        description="Pause between reminder sends to respect gateway rate limits"
    )
    REMINDER_CLAIM_TTL_SECONDS: int = Field(
        default=300,
        description="Lease on an in-flight reminder send before another run may retry it"
    )

    # Inbound replies
    ACTIVE_PLACEMENT_HORIZON_DAYS: int = Field(
        default=7,
        description="How far ahead an inbound reply may resolve a placement"
    )
    COMPANY_PHONE_DISPLAY: str = Field(
        default="our office",
        description="Phone number or name quoted in help texts"
    )

    # Application
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    API_PREFIX: str = Field(
        default="/api/v1",
        description="API route prefix"
    )
    CORS_ORIGINS: list = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    @validator("TWILIO_AUTH_TOKEN")
    def validate_twilio_token(cls, v, values):
        """Ensure Twilio credentials are set in production."""
        if values.get("ENVIRONMENT") == "production" and not v:
            raise ValueError("TWILIO_AUTH_TOKEN is required in production environment")
        return v

    @validator("REMINDER_NIGHT_BEFORE_TIME", "REMINDER_DAY_OF_TIME")
    def validate_clock_time(cls, v):
        """Reminder times must be HH:MM."""
        from utils.time_utils import parse_clock_time
        parse_clock_time(v)
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


def validate_settings():
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    from utils.time_utils import get_zone

    errors = []

    if not settings.MONGODB_URL:
        errors.append("MONGODB_URL is required")

    try:
        get_zone(settings.REMINDER_TIMEZONE)
    except ValueError as e:
        errors.append(str(e))

    if settings.REMINDER_INTERVAL_MINUTES <= 0:
        errors.append("REMINDER_INTERVAL_MINUTES must be positive")

    # Production-specific validations
    if settings.is_production:
        if not settings.TWILIO_ACCOUNT_SID:
            errors.append("TWILIO_ACCOUNT_SID is required in production")
        if not settings.TWILIO_FROM_NUMBER:
            errors.append("TWILIO_FROM_NUMBER is required in production")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
