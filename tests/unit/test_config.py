"""Tests for centralized configuration module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from unified_inbox_core.config import (
    AppConfig,
    AuthorizationConfig,
    DatabaseConfig,
    LoggingConfig,
    ProviderSettings,
    ProvidersConfig,
    default_provider_catalogue,
    get_config,
    reset_config,
    set_config,
)
from unified_inbox_core.constants import LogLevel


class TestDatabaseConfig:
    def test_from_env(self):
        with patch.dict(os.environ, {"DATABASE_URL": "postgresql://inbox:pw@db/inbox"}):
            config = DatabaseConfig()

        assert config.connection_string == "postgresql://inbox:pw@db/inbox"
        assert config.pool_size == 5


class TestLoggingConfig:
    def test_default_level(self):
        with patch.dict(os.environ, {}, clear=True):
            assert LoggingConfig().level == LogLevel.INFO.value

    def test_level_is_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level_rejected(self):
        with pytest.raises(PydanticValidationError):
            LoggingConfig(level="LOUD")


class TestAuthorizationConfig:
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = AuthorizationConfig()

        assert config.handshake_ttl_seconds == 600
        assert config.refresh_threshold_seconds == 300
        assert config.success_redirect_url == "/settings/connections"

    def test_from_env(self):
        env = {
            "HANDSHAKE_TTL_SECONDS": "120",
            "REFRESH_THRESHOLD_SECONDS": "60",
            "CONNECT_ERROR_REDIRECT_URL": "https://app.example.com/oops",
        }
        with patch.dict(os.environ, env):
            config = AuthorizationConfig()

        assert config.handshake_ttl_seconds == 120
        assert config.refresh_threshold_seconds == 60
        assert config.error_redirect_url == "https://app.example.com/oops"

    def test_ttl_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            AuthorizationConfig(handshake_ttl_seconds=0)


class TestProvidersConfig:
    def test_catalogue_reads_credentials_from_env(self):
        env = {
            "PROVIDER_SLACK_CLIENT_ID": "slack-id",
            "PROVIDER_SLACK_CLIENT_SECRET": "slack-secret",
            "PROVIDER_SLACK_SEND_URL": "https://gateway.example.com/slack/send",
        }
        with patch.dict(os.environ, env):
            catalogue = default_provider_catalogue()

        slack = catalogue["slack"]
        assert slack.is_configured
        assert slack.send_url == "https://gateway.example.com/slack/send"
        assert slack.scope_separator == ","
        assert slack.account_name_key == "team_name"

    def test_provider_without_secret_is_not_configured(self):
        settings = ProviderSettings(
            name="hubspot",
            label="HubSpot",
            client_id="id-only",
            authorize_url="https://app.hubspot.com/oauth/authorize",
            token_url="https://api.hubapi.com/oauth/v1/token",
        )

        assert not settings.is_configured

    def test_timeout_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            ProvidersConfig(request_timeout_seconds=0)

    def test_timeout_from_env(self):
        with patch.dict(os.environ, {"PROVIDER_TIMEOUT_SECONDS": "2.5"}):
            assert ProvidersConfig(providers={}).request_timeout_seconds == 2.5


class TestGlobalConfig:
    def setup_method(self):
        reset_config()

    def teardown_method(self):
        reset_config()

    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_set_and_reset(self):
        config = AppConfig(debug=True, providers=ProvidersConfig(providers={}))

        set_config(config)
        assert get_config() is config

        reset_config()
        assert get_config() is not config

    def test_debug_from_env(self):
        with patch.dict(os.environ, {"DEBUG": "true"}):
            assert AppConfig(providers=ProvidersConfig(providers={})).debug is True
