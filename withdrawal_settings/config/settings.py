"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Wallet management service
    wms_api_url: str
    wms_access_token: str | None = None
    api_timeout: float = Field(
        default=30.0, gt=0, description="WMS request timeout in seconds"
    )

    # Withdrawal settings behaviour
    default_pause_reason: str = Field(
        default="immediate action needed",
        description="Reason sent when withdrawals are paused without one",
    )
    include_testnet_chains: bool = Field(
        default=False,
        description="Load limits for testnet chains in the per-chain fallback",
    )
    chain_config_page_size: int = Field(
        default=100, ge=1, le=1000, description="Chain configs fetched per page"
    )

    # Application
    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"
    log_file: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("wms_api_url")
    @classmethod
    def validate_wms_api_url(cls, v: str) -> str:
        """Validate WMS base URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                "WMS_API_URL must be an absolute URL starting with "
                "http:// or https://"
            )
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level name."""
        level = v.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return level

    @model_validator(mode="after")
    def validate_production(self) -> "Settings":
        """Validate production-specific requirements."""
        if self.environment == "production":
            if self.debug:
                raise ValueError(
                    "DEBUG must be False in production environment. "
                    "Set DEBUG=false in your .env file."
                )

            if not self.wms_api_url.startswith("https://"):
                raise ValueError("WMS_API_URL must use https in production")

            if not self.wms_access_token:
                logger.warning(
                    "WMS_ACCESS_TOKEN is not configured. "
                    "Requests to the wallet management service will be anonymous."
                )

        return self


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings instance (re-read on next access)."""
    global _settings
    _settings = None
