"""
Centralized configuration management for the Unified Inbox Core.

This module provides a unified configuration system with support for:
- Environment variables
- Feature flags
- Authorization flow timing (handshake TTL, refresh threshold)
- Per-provider OAuth client settings
- Validation using Pydantic
"""

import os
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, LogLevel, ProviderName, QueueName


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DATABASE_URL.value, "sqlite:///./unified_inbox.db"
        ),
        description="Database connection string",
    )
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum overflow connections")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL statements")


class QueueConfig(BaseModel):
    """Queue configuration for Azure Storage Queues."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""),
        description="Azure Storage connection string",
    )
    logs_queue_name: str = Field(default=QueueName.LOGS.value, description="Logs queue name")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class FeatureFlags(BaseModel):
    """Feature flags for controlling runtime behavior."""

    enable_logs_queue: bool = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.ENABLE_LOGS_QUEUE.value, "false").lower()
        == "true",
        description="Ship structured logs to the Azure logs queue",
    )


class AuthorizationConfig(BaseModel):
    """Timing and redirect settings for the connect flow."""

    handshake_ttl_seconds: int = Field(
        default_factory=lambda: int(os.getenv(EnvironmentVariable.HANDSHAKE_TTL_SECONDS.value, "600")),
        gt=0,
        description="Lifetime of an issued CSRF state token",
    )
    refresh_threshold_seconds: int = Field(
        default_factory=lambda: int(
            os.getenv(EnvironmentVariable.REFRESH_THRESHOLD_SECONDS.value, "300")
        ),
        ge=0,
        description="Refresh access tokens expiring within this window",
    )
    state_token_bytes: int = Field(default=32, ge=16, description="Entropy of state tokens")
    success_redirect_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.SUCCESS_REDIRECT_URL.value, "/settings/connections"
        ),
        description="UI location after a successful callback",
    )
    error_redirect_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.ERROR_REDIRECT_URL.value, "/settings/connections"
        ),
        description="UI location after a failed callback",
    )


class SecurityConfig(BaseModel):
    """Security-related configuration."""

    encryption_key: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.ENCRYPTION_KEY.value),
        description="Prefix for pgcrypto symmetric keys",
    )


class ProviderSettings(BaseModel):
    """OAuth and messaging endpoints for one provider."""

    name: str
    label: str = Field(description="Human label used in display names, e.g. 'Slack'")
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    authorize_url: str
    token_url: str
    send_url: Optional[str] = None
    fetch_url: Optional[str] = None
    default_scopes: List[str] = Field(default_factory=list)
    scope_separator: str = " "
    account_name_key: str = Field(
        default="account_name",
        description="Key in provider metadata holding the account/workspace name",
    )
    extra_authorize_params: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


def _provider_from_env(
    name: ProviderName,
    label: str,
    authorize_url: str,
    token_url: str,
    scopes: List[str],
    scope_separator: str = " ",
    account_name_key: str = "account_name",
) -> ProviderSettings:
    prefix = f"PROVIDER_{name.value.upper()}"
    return ProviderSettings(
        name=name.value,
        label=label,
        client_id=os.getenv(f"{prefix}_CLIENT_ID"),
        client_secret=os.getenv(f"{prefix}_CLIENT_SECRET"),
        authorize_url=os.getenv(f"{prefix}_AUTHORIZE_URL", authorize_url),
        token_url=os.getenv(f"{prefix}_TOKEN_URL", token_url),
        send_url=os.getenv(f"{prefix}_SEND_URL"),
        fetch_url=os.getenv(f"{prefix}_FETCH_URL"),
        default_scopes=scopes,
        scope_separator=scope_separator,
        account_name_key=account_name_key,
    )


def default_provider_catalogue() -> Dict[str, ProviderSettings]:
    """Built-in providers; client credentials and message endpoints come from env."""
    providers = [
        _provider_from_env(
            ProviderName.SLACK,
            "Slack",
            "https://slack.com/oauth/v2/authorize",
            "https://slack.com/api/oauth.v2.access",
            ["channels:history", "channels:read", "chat:write"],
            scope_separator=",",
            account_name_key="team_name",
        ),
        _provider_from_env(
            ProviderName.FACEBOOK,
            "Facebook",
            "https://www.facebook.com/v18.0/dialog/oauth",
            "https://graph.facebook.com/v18.0/oauth/access_token",
            ["pages_messaging", "pages_manage_metadata", "pages_read_engagement", "pages_show_list"],
            scope_separator=",",
        ),
        _provider_from_env(
            ProviderName.INSTAGRAM,
            "Instagram",
            "https://www.facebook.com/v18.0/dialog/oauth",
            "https://graph.facebook.com/v18.0/oauth/access_token",
            ["instagram_basic", "instagram_manage_messages", "pages_show_list"],
            scope_separator=",",
        ),
        _provider_from_env(
            ProviderName.SALESFORCE,
            "Salesforce",
            "https://login.salesforce.com/services/oauth2/authorize",
            "https://login.salesforce.com/services/oauth2/token",
            ["api", "refresh_token"],
        ),
        _provider_from_env(
            ProviderName.HUBSPOT,
            "HubSpot",
            "https://app.hubspot.com/oauth/authorize",
            "https://api.hubapi.com/oauth/v1/token",
            ["crm.objects.contacts.read", "conversations.read", "conversations.write"],
        ),
        _provider_from_env(
            ProviderName.EMAIL,
            "Email",
            "https://accounts.google.com/o/oauth2/v2/auth",
            "https://oauth2.googleapis.com/token",
            [
                "https://www.googleapis.com/auth/gmail.readonly",
                "https://www.googleapis.com/auth/gmail.send",
            ],
            account_name_key="email",
        ),
    ]
    return {provider.name: provider for provider in providers}


class ProvidersConfig(BaseModel):
    """Provider client configuration."""

    request_timeout_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv(EnvironmentVariable.PROVIDER_TIMEOUT_SECONDS.value, "10")
        ),
        gt=0,
        description="Bounded timeout applied to every provider call",
    )
    providers: Dict[str, ProviderSettings] = Field(default_factory=default_provider_catalogue)


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )
    debug: bool = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.DEBUG.value, "false").lower() == "true",
        description="Include error causes in HTTP error bodies",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    authorization: AuthorizationConfig = Field(default_factory=AuthorizationConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
