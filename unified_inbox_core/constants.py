"""
Constants and enums for the Unified Inbox Core.

This module centralizes all magic strings and constants used throughout
the package to ensure consistency and maintainability.
"""

from enum import Enum


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class QueueName(str, Enum):
    """Standard queue names."""

    LOGS = "logs-queue"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    DEBUG = "DEBUG"
    ENABLE_LOGS_QUEUE = "ENABLE_LOGS_QUEUE"
    ENCRYPTION_KEY = "TOKEN_ENCRYPTION_KEY"
    HANDSHAKE_TTL_SECONDS = "HANDSHAKE_TTL_SECONDS"
    REFRESH_THRESHOLD_SECONDS = "REFRESH_THRESHOLD_SECONDS"
    PROVIDER_TIMEOUT_SECONDS = "PROVIDER_TIMEOUT_SECONDS"
    SUCCESS_REDIRECT_URL = "CONNECT_SUCCESS_REDIRECT_URL"
    ERROR_REDIRECT_URL = "CONNECT_ERROR_REDIRECT_URL"


class LogContextKey(str, Enum):
    """Standard keys for logging context."""

    OPERATION_ID = "operation_id"
    CORRELATION_ID = "correlation_id"
    TENANT_ID = "tenant_id"
    USER_ID = "user_id"
    CONNECTION_ID = "connection_id"
    PROVIDER_NAME = "provider_name"
    DURATION_MS = "duration_ms"
    STATUS = "status"
    ERROR_CODE = "error_code"
    SOURCE_MODULE = "source_module"


class OperationStatus(str, Enum):
    """Status values for operations."""

    SUCCESS = "success"
    ERROR = "error"


class ProviderName(str, Enum):
    """Providers with a built-in OAuth endpoint catalogue."""

    SLACK = "slack"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    SALESFORCE = "salesforce"
    HUBSPOT = "hubspot"
    EMAIL = "email"


class CallbackReason(str, Enum):
    """Reason codes appended to the UI redirect after an authorization callback."""

    CONNECTED = "connected"
    ALREADY_COMPLETED = "already_completed"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    MISSING_CODE = "missing_code"
    PROVIDER_ERROR = "provider_error"
    PROVIDER_DENIED = "provider_denied"
    CONFLICT = "conflict"


class AuthenticationReason(str, Enum):
    """Why a connection cannot produce a usable access token."""

    NOT_CONNECTED = "not_connected"
    RECONNECT_REQUIRED = "reconnect_required"


class HeaderName(str, Enum):
    """HTTP headers carrying the caller scope."""

    TENANT_ID = "X-Tenant-ID"
    USER_ID = "X-User-ID"
