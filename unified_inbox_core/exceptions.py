"""
Consolidated exception system with error codes, context, and correlation support.

This module provides a unified exception hierarchy for the entire package,
with automatic logging and correlation ID tracking. The HTTP layer maps
each error to its ``status_code``; the distinction between
``AuthenticationError`` (reconnect required, 401) and
``ExternalProviderError`` (transient provider outage, 502) is what lets the
UI prompt for re-authorization only when it is actually needed.
"""

import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

_thread_local = threading.local()


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    CONFLICT = "3002"

    # Business logic errors (4xxx)
    PERMISSION_DENIED = "4003"
    AUTHENTICATION_REQUIRED = "4005"
    RECONNECT_REQUIRED = "4006"
    HANDSHAKE_INVALID = "4007"

    # External service errors (5xxx)
    EXTERNAL_API_ERROR = "5002"
    INVALID_GRANT = "5005"


class BaseError(Exception):
    """Base exception with context, error codes, logging, and error chaining."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Initialize base error with rich context.

        Args:
            message: Human-readable error message
            error_code: Standardized error code from ErrorCode enum
            status_code: HTTP status code for API responses
            cause: Original exception that caused this error
            **context: Additional context information
        """
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_id = str(uuid.uuid4())
        self.context = context

        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id

        self.context["error_id"] = self.error_id

        if cause:
            self.context["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

        super().__init__(message)

    def _log_error(self) -> None:
        """Log error with appropriate level based on status code."""
        # Lazy import: the logger module imports config which imports this module
        from .utils.logger import get_logger

        logger = get_logger()

        log_data = {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "timestamp": self.timestamp,
            "context": {k: v for k, v in self.context.items() if k not in ["cause", "traceback"]},
        }

        if "correlation_id" in self.context:
            log_data["correlation_id"] = self.context["correlation_id"]

        if self.status_code >= 500:
            logger.error(
                f"Error {self.error_code.value}: {self.message}", extra=log_data, exc_info=self.cause
            )
        elif self.status_code >= 400:
            logger.warning(f"Client error {self.error_code.value}: {self.message}", extra=log_data)
        else:
            logger.info(f"Error {self.error_code.value}: {self.message}", extra=log_data)

    def to_dict(
        self, include_cause: bool = False, include_traceback: bool = False
    ) -> Dict[str, Any]:
        """
        Convert to dict for API responses.

        Args:
            include_cause: Include cause information (useful for debugging)
            include_traceback: Include full traceback (only in debug mode)

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        result: Dict[str, Any] = {
            "error": {
                "id": self.error_id,
                "code": self.error_code.value,
                "message": self.message,
                "timestamp": self.timestamp,
                "context": {
                    k: v
                    for k, v in self.context.items()
                    if k not in ["cause", "error_id", "correlation_id"]
                },
            }
        }

        if "correlation_id" in self.context:
            result["error"]["correlation_id"] = self.context["correlation_id"]

        if include_cause and "cause" in self.context:
            result["error"]["cause"] = {
                "type": self.context["cause"]["type"],
                "message": self.context["cause"]["message"],
            }
            if include_traceback:
                result["error"]["cause"]["traceback"] = self.context["cause"]["traceback"]

        return result

    def add_context(self, **kwargs: Any) -> "BaseError":
        """
        Add additional context to the error (fluent interface).

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self

    @property
    def error_chain(self) -> List[Exception]:
        """Get the full chain of errors."""
        chain: List[Exception] = [self]
        current = self.cause
        while current:
            chain.append(current)
            current = getattr(current, "cause", None)
        return chain


# Layer-specific base exceptions
class RepositoryError(BaseError):
    """Repository layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """Service layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Malformed input."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class NotFoundError(BaseError):
    """Resource does not exist or is not visible to the caller's tenant."""

    def __init__(self, message: str = "Resource not found", cause: Optional[Exception] = None, **context):
        super().__init__(message, ErrorCode.NOT_FOUND, 404, cause, **context)


class AuthenticationError(BaseError):
    """No valid provider credential is available for the connection."""

    def __init__(
        self,
        message: str,
        reason: str,
        cause: Optional[Exception] = None,
        **context,
    ):
        from .constants import AuthenticationReason

        self.reason = reason
        context["reason"] = reason
        error_code = (
            ErrorCode.RECONNECT_REQUIRED
            if reason == AuthenticationReason.RECONNECT_REQUIRED.value
            else ErrorCode.AUTHENTICATION_REQUIRED
        )
        super().__init__(message, error_code, 401, cause, **context)

    @property
    def reconnect_required(self) -> bool:
        return self.error_code == ErrorCode.RECONNECT_REQUIRED


class AuthorizationError(BaseError):
    """Tenant mismatch on an operation that must not leak existence."""

    def __init__(self, message: str = "Tenant isolation violation detected", **context):
        super().__init__(message, ErrorCode.PERMISSION_DENIED, 403, **context)


class ConflictError(BaseError):
    """A conditional write lost the race after its internal retry."""

    def __init__(self, message: str, cause: Optional[Exception] = None, **context):
        super().__init__(message, ErrorCode.CONFLICT, 409, cause, **context)


class HandshakeError(BaseError):
    """Authorization callback carried an unusable state token."""

    def __init__(self, message: str, reason: str, **context):
        self.reason = reason
        context["reason"] = reason
        super().__init__(message, ErrorCode.HANDSHAKE_INVALID, 400, **context)


class ExternalProviderError(BaseError):
    """The provider client failed (network error, timeout, non-success response)."""

    def __init__(
        self,
        message: str,
        provider_name: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        cause: Optional[Exception] = None,
        **context,
    ):
        self.provider_name = provider_name
        context["provider_name"] = provider_name
        super().__init__(message, error_code, 502, cause, **context)


class ProviderGrantRejectedError(ExternalProviderError):
    """The provider rejected a grant (``invalid_grant`` class): the credential is dead."""

    def __init__(self, message: str, provider_name: str, cause: Optional[Exception] = None, **context):
        super().__init__(
            message, provider_name, error_code=ErrorCode.INVALID_GRANT, cause=cause, **context
        )


# Factory function for not found errors
def not_found(resource_type: str, cause: Optional[Exception] = None, **identifiers) -> NotFoundError:
    """
    Factory for not found errors.

    The message is built only from what the caller asked for, so a foreign
    resource and a missing one produce the same error.

    Args:
        resource_type: Type of resource (e.g., 'PlatformConnection')
        cause: Original exception if any
        **identifiers: Resource identifiers (e.g., connection_id='123')

    Returns:
        Configured NotFoundError instance
    """
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"{resource_type} not found"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return NotFoundError(message, cause=cause, resource_type=resource_type, **identifiers)


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current thread's correlation ID."""
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    """Clear the current thread's correlation ID."""
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")
