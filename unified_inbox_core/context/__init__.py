from .operation_context import OperationContext, OperationHandler, operation
from .tenant_context import TenantContext, tenant_context

__all__ = [
    "OperationContext",
    "OperationHandler",
    "operation",
    "TenantContext",
    "tenant_context",
]
