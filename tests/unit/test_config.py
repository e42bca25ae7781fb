"""
Unit tests for application settings
"""

import os
from unittest.mock import patch

import pytest

from mediasync.config import Settings, get_settings
from mediasync.core.exceptions import ConfigurationError


class TestSettings:
    """Test Settings defaults and derived values"""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.environment == "testing"
        assert settings.retry_max_attempts == 3
        assert settings.token_refresh_schedule == "0 */6 * * *"
        assert settings.is_production is False

    def test_rate_limit_intervals(self):
        settings = Settings(_env_file=None)

        assert settings.rate_limit_intervals == {"tmdb": 0.3, "mdblist": 0.6, "trakt": 0.6}

    def test_default_retry_policy(self):
        settings = Settings(_env_file=None, retry_max_attempts=5, retry_max_delay_seconds=10)

        policy = settings.default_retry_policy

        assert policy.max_attempts == 5
        assert policy.initial_delay == 1.0
        assert policy.max_delay == 10
        assert 503 in policy.retryable_status_codes

    def test_trakt_not_configured_by_default(self):
        settings = Settings(_env_file=None)

        assert settings.trakt_oauth_configured is False
        assert settings.trakt_credentials.configured is False

    def test_trakt_credentials(self):
        settings = Settings(
            _env_file=None,
            trakt_client_id="id",
            trakt_client_secret="secret",
            trakt_base_url="https://api.trakt.example/",
        )

        assert settings.trakt_oauth_configured is True
        assert settings.trakt_credentials.token_url == "https://api.trakt.example/oauth/token"

    def test_environment_variables_override_defaults(self):
        with patch.dict(os.environ, {"MEDIASYNC_TMDB_API_DELAY_SECONDS": "1.5"}):
            settings = Settings(_env_file=None)

        assert settings.tmdb_api_delay_seconds == 1.5


class TestGetSettings:
    """Test get_settings()"""

    def test_cached(self):
        assert get_settings() is get_settings()

    def test_short_encryption_key_raises_configuration_error(self):
        get_settings.cache_clear()
        try:
            with patch.dict(os.environ, {"MEDIASYNC_ENCRYPTION_KEY": "too-short"}):
                with pytest.raises(ConfigurationError, match="Invalid configuration"):
                    get_settings()
        finally:
            get_settings.cache_clear()
