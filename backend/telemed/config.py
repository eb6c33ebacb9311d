from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    SQL_ECHO: bool = False

    SECRET_KEY: str = Field(min_length=16)
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    # Brute-force defense
    REDIS_URL: Optional[str] = None
    LOGIN_MAX_FAILED_ATTEMPTS: int = 5
    UNKNOWN_EMAIL_DELAY_SECONDS: float = 0.3
    TRUST_FORWARDED_FOR: bool = True
    RATE_LIMIT_ENABLED: bool = True
    LOGIN_RATE_LIMIT: str = "6/15minutes"
    API_RATE_LIMIT: str = "120/minute"

    # Email settings
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_FROM_EMAIL: str = "noreply@telemed.local"

    # SMS settings
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None

    # Test mode settings
    TWILIO_TEST_MODE: str = "false"
    MAILTRAP_MODE: str = "false"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def redis_url(self) -> Optional[str]:
        """REDIS_URL, or None when unset or pointing at the in-memory backend."""
        if not self.REDIS_URL or self.REDIS_URL.strip().lower() == "memory://":
            return None
        return self.REDIS_URL.strip()


settings = Settings()
