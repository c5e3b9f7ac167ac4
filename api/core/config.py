"""Application configuration using Pydantic Settings"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent.parent.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Discord OAuth (optional, the feature reports "unavailable" without it)
    discord_client_id: str = Field(default="", description="Discord OAuth Client ID")
    discord_client_secret: str = Field(default="", description="Discord OAuth Client Secret")
    discord_redirect_uri: str = Field(
        default="http://localhost:8000/api/discord/callback",
        description="OAuth redirect URI registered with Discord",
    )
    discord_bot_token: str = Field(
        default="", description="Bot token used for channel listing and webhook creation"
    )

    # Discord HTTP behaviour
    discord_api_base: str = Field(
        default="https://discord.com/api/v10", description="Discord REST base URL"
    )
    discord_request_timeout: float = Field(default=10.0, description="Per-request timeout (s)")
    discord_default_retry_after: float = Field(
        default=5.0, description="429 wait when Discord sends no retry-after (s)"
    )
    discord_cache_staleness_seconds: int = Field(
        default=300, description="Guild/channel cache freshness window (s)"
    )
    discord_token_refresh_margin_seconds: int = Field(
        default=300, description="Refresh access tokens expiring within this window (s)"
    )
    webhook_name_prefix: str = Field(
        default="Chatterbox", description="Prefix for webhooks created in Discord"
    )

    # JWT Configuration (issued by the main application)
    jwt_secret_key: str = Field(..., description="Secret key for JWT token verification")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")

    # Server URLs
    frontend_url: str = Field(default="http://localhost:3000", description="Frontend URL for CORS")

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @field_validator("discord_api_base")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins"""
        return [self.frontend_url]

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()  # type: ignore[call-arg]
