# settings.py
import logging
import sys

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ("CLIENT_ID", "CLIENT_SECRET", "REDIRECT_URI")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    # Google OAuth
    CLIENT_ID: str = Field(..., min_length=1, description="Google OAuth client ID")
    CLIENT_SECRET: str = Field(..., min_length=1, description="Google OAuth client secret")
    REDIRECT_URI: str = Field(..., min_length=1, description="Registered redirect URI (e.g. http://localhost:5000/auth/google/callback)")
    OAUTH_SCOPE: str = Field("https://www.googleapis.com/auth/drive", description="Full read/write Drive access")

    GOOGLE_AUTH_URL: str = Field("https://accounts.google.com/o/oauth2/v2/auth")
    GOOGLE_TOKEN_URL: str = Field("https://oauth2.googleapis.com/token")
    DRIVE_API_BASE: str = Field("https://www.googleapis.com/drive/v3")
    DRIVE_UPLOAD_BASE: str = Field("https://www.googleapis.com/upload/drive/v3")

    # Server
    SERVER_HOST: str = Field("0.0.0.0")
    PORT: int = Field(5000)

    # Behavior
    HTTP_TIMEOUT: float = Field(60.0)
    LOG_LEVEL: str = Field("INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def _known_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        return level


def load_settings(**overrides) -> Settings:
    """Load settings from the environment, exiting the process if a secret is missing."""
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        invalid = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        logger.error(f"Missing or invalid environment variables: {', '.join(invalid)}")
        logger.error(f"Required: {', '.join(REQUIRED_SETTINGS)}")
        sys.exit(1)

    # Never log the secrets themselves
    logger.info("=== ENVIRONMENT CHECK ===")
    logger.info("CLIENT_ID: Present")
    logger.info("CLIENT_SECRET: Present")
    logger.info(f"REDIRECT_URI: {settings.REDIRECT_URI}")
    return settings
