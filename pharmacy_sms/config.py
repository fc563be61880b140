from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration. Left optional so a missing value surfaces as a
    # ConfigurationError on the request instead of a crash at import time.
    DATABASE_URL: Optional[str] = None

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Public base URL of this service, used to build the status callback URL
    # handed to the carrier when a number has no explicit one.
    PUBLIC_BASE_URL: Optional[str] = None
    STATUS_CALLBACK_PATH: str = "/sms-delivery-webhook"

    # Deployment-level Twilio credentials, used when a number carries none
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_API_BASE: str = "https://api.twilio.com"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
