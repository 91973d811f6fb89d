"""Request-scoped dependencies for the HTTP layer."""

from typing import NamedTuple, Optional

from fastapi import Header, Request

from ..constants import HeaderName
from ..exceptions import ErrorCode, ValidationError
from ..services.tenant_guard import TenantGuard


class CallerScope(NamedTuple):
    tenant_id: str
    user_id: str


def get_guard(request: Request) -> TenantGuard:
    return request.app.state.guard


def get_caller(
    tenant_id: Optional[str] = Header(default=None, alias=HeaderName.TENANT_ID.value),
    user_id: Optional[str] = Header(default=None, alias=HeaderName.USER_ID.value),
) -> CallerScope:
    """Resolve the caller scope from the identity headers set by the gateway."""
    if not tenant_id or not tenant_id.strip():
        raise ValidationError(
            f"{HeaderName.TENANT_ID.value} header is required",
            error_code=ErrorCode.MISSING_REQUIRED,
            field="tenant_id",
        )
    if not user_id or not user_id.strip():
        raise ValidationError(
            f"{HeaderName.USER_ID.value} header is required",
            error_code=ErrorCode.MISSING_REQUIRED,
            field="user_id",
        )
    return CallerScope(tenant_id=tenant_id.strip(), user_id=user_id.strip())
