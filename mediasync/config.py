"""
Application Configuration

Uses pydantic-settings for environment variable loading with validation.
All configuration is centralized here for easy management.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationError, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mediasync.core.exceptions import ConfigurationError
from mediasync.core.retry import RetryPolicy
from mediasync.models.tokens import ClientCredentials


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables can be set directly or via .env file.
    All secrets should be provided via environment variables in production.
    """

    model_config = SettingsConfigDict(
        env_prefix="MEDIASYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Environment
    # ==========================================================================
    environment: Literal["development", "testing", "production"] = Field(
        default="development",
        description="Runtime environment"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level for the scheduler service"
    )

    # ==========================================================================
    # Database
    # ==========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./mediasync.db",
        description="Async SQLAlchemy connection URL"
    )

    # ==========================================================================
    # Security
    # ==========================================================================
    encryption_key: str = Field(
        default="dev-encryption-key-change-in-production-32-chars",
        description="Secret used to encrypt stored credentials (first 32 chars are the AES key)",
        min_length=32
    )

    # ==========================================================================
    # Trakt (OAuth)
    # ==========================================================================
    trakt_client_id: str | None = Field(
        default=None,
        description="Trakt OAuth client ID"
    )

    trakt_client_secret: str | None = Field(
        default=None,
        description="Trakt OAuth client secret"
    )

    trakt_redirect_uri: str = Field(
        default="http://localhost:3000/api/v1/auth/trakt/callback",
        description="Redirect URI registered with the Trakt application"
    )

    trakt_base_url: str = Field(
        default="https://api.trakt.tv",
        description="Trakt API base URL"
    )

    trakt_api_delay_seconds: float = Field(
        default=0.6,
        description="Minimum spacing between Trakt API calls"
    )

    # ==========================================================================
    # Metadata providers
    # ==========================================================================
    tmdb_api_key: str | None = Field(
        default=None,
        description="TMDB API key"
    )

    tmdb_base_url: str = Field(
        default="https://api.themoviedb.org/3",
        description="TMDB API base URL"
    )

    tmdb_api_delay_seconds: float = Field(
        default=0.3,
        description="Minimum spacing between TMDB API calls"
    )

    mdblist_api_key: str | None = Field(
        default=None,
        description="MDBList API key"
    )

    mdblist_base_url: str = Field(
        default="https://api.mdblist.com",
        description="MDBList API base URL"
    )

    mdblist_api_delay_seconds: float = Field(
        default=0.6,
        description="Minimum spacing between MDBList API calls"
    )

    # ==========================================================================
    # Retry
    # ==========================================================================
    retry_max_attempts: int = Field(
        default=3,
        description="Maximum attempts for retryable upstream calls",
        ge=1
    )

    retry_initial_delay_seconds: float = Field(
        default=1.0,
        description="Delay before the first retry"
    )

    retry_max_delay_seconds: float = Field(
        default=30.0,
        description="Upper bound for a single backoff delay"
    )

    # ==========================================================================
    # Scheduled jobs
    # ==========================================================================
    token_refresh_schedule: str = Field(
        default="0 */6 * * *",
        description="CRON expression for the OAuth token refresh job"
    )

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field
    @property
    def trakt_oauth_configured(self) -> bool:
        """Check if Trakt OAuth is configured."""
        return bool(self.trakt_client_id and self.trakt_client_secret)

    @computed_field
    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def trakt_credentials(self) -> ClientCredentials:
        """Trakt client registration for the refresh_token grant."""
        return ClientCredentials(
            client_id=self.trakt_client_id,
            client_secret=self.trakt_client_secret,
            redirect_uri=self.trakt_redirect_uri,
            token_url=f"{self.trakt_base_url.rstrip('/')}/oauth/token",
        )

    @property
    def rate_limit_intervals(self) -> dict[str, float]:
        """Minimum call spacing per external service, in seconds."""
        return {
            "tmdb": self.tmdb_api_delay_seconds,
            "mdblist": self.mdblist_api_delay_seconds,
            "trakt": self.trakt_api_delay_seconds,
        }

    @property
    def default_retry_policy(self) -> RetryPolicy:
        """Retry policy for upstream calls built from the retry settings."""
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay_seconds,
            max_delay=self.retry_max_delay_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.

    Raises:
        ConfigurationError: If the environment holds invalid settings
            (e.g. an encryption key shorter than 32 characters)
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
