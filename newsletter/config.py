from functools import lru_cache
from typing import Literal, Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from newsletter.errors import ConfigError


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

    # Database Configuration - required
    DATABASE_URL: str
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: float = 30.0

    # SMTP relay - required
    SMTP_HOST: str
    SMTP_PORT: int
    SMTP_USERNAME: str
    SMTP_PASSWORD: str
    SMTP_TLS: Literal["starttls", "tls", "none"]
    SMTP_TIMEOUT: float = 10.0
    SMTP_VERIFY_ON_STARTUP: bool = True
    MAIL_FROM: Optional[str] = None
    WELCOME_SUBJECT: str = "Welcome to Our Newsletter!"

    # Server - PORT is required
    HOST: str = "0.0.0.0"
    PORT: int
    SHUTDOWN_GRACE_SECONDS: int = 30

    LOG_LEVEL: str = "INFO"


def load_settings() -> Settings:
    """
    Build settings from the environment.

    Raises:
        ConfigError: when a required value is missing or malformed
    """
    try:
        return Settings()
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ConfigError(f"Invalid or missing configuration: {fields}") from e


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file more than once per process.
    """
    return load_settings()
