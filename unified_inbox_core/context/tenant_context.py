"""
Tenant context management for the Unified Inbox Core.

Every guarded operation runs inside ``tenant_context(tenant_id, user_id)`` so
that logs carry the caller scope and lower layers can assert on it.
"""

import threading
from contextlib import contextmanager
from typing import Any, Generator, Optional

from ..exceptions import ErrorCode, ValidationError
from ..utils.logger import get_logger


def _require_identifier(value: Any, field: str) -> str:
    if not value or not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{field} must be a non-empty string",
            error_code=ErrorCode.MISSING_REQUIRED,
            field=field,
            value=value,
        )
    return value.strip()


class TenantContext:
    """
    Manages the (tenant, user) scope using thread-local storage.
    """

    _thread_local = threading.local()
    _logger = get_logger()

    @classmethod
    def set_current_tenant(cls, tenant_id: str, user_id: Optional[str] = None) -> None:
        """
        Set the current tenant (and optionally user) for the execution context.

        Raises:
            ValidationError: If tenant_id is empty, or user_id is given but empty
        """
        cls._thread_local.tenant_id = _require_identifier(tenant_id, "tenant_id")
        if user_id is not None:
            cls._thread_local.user_id = _require_identifier(user_id, "user_id")
        elif hasattr(cls._thread_local, "user_id"):
            delattr(cls._thread_local, "user_id")
        cls._logger.debug(f"Current tenant set to: {tenant_id}")

    @classmethod
    def get_current_tenant_id(cls) -> Optional[str]:
        return getattr(cls._thread_local, "tenant_id", None)

    @classmethod
    def get_current_user_id(cls) -> Optional[str]:
        return getattr(cls._thread_local, "user_id", None)

    @classmethod
    def clear_current_tenant(cls) -> None:
        """Clear the tenant and user ids from the execution context."""
        for attr in ("tenant_id", "user_id"):
            if hasattr(cls._thread_local, attr):
                delattr(cls._thread_local, attr)
        cls._logger.debug("Current tenant cleared")


@contextmanager
def tenant_context(tenant_id: str, user_id: Optional[str] = None) -> Generator[None, None, None]:
    """
    Context manager for tenant operations.

    Sets the current scope for the duration of the context and restores the
    previous one afterward.
    """
    previous_tenant = TenantContext.get_current_tenant_id()
    previous_user = TenantContext.get_current_user_id()
    TenantContext.set_current_tenant(tenant_id, user_id)
    try:
        yield
    finally:
        if previous_tenant:
            TenantContext.set_current_tenant(previous_tenant, previous_user)
        else:
            TenantContext.clear_current_tenant()

