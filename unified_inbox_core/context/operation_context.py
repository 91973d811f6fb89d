"""
Operation context for handling cross-cutting concerns.

This module wraps service operations with ENTER/EXIT/ERROR logging,
duration measurement and correlation id propagation.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Optional, TypeVar, Union, cast

from ..constants import LogContextKey, OperationStatus
from ..exceptions import BaseError, get_correlation_id, set_correlation_id
from ..utils.logger import ContextAwareLogger, get_logger
from .tenant_context import TenantContext


class OperationContext:
    """Context for a specific operation."""

    def __init__(self, operation_name: str, correlation_id: Optional[str] = None, **context):
        self.operation_name = operation_name
        self.operation_id = str(uuid.uuid4())

        self.correlation_id = correlation_id or get_correlation_id() or str(uuid.uuid4())
        set_correlation_id(self.correlation_id)

        self.context = context
        self.context[LogContextKey.OPERATION_ID.value] = self.operation_id
        self.context[LogContextKey.CORRELATION_ID.value] = self.correlation_id

        self.start_time = time.monotonic()

    @property
    def duration_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    def add_context(self, **kwargs) -> None:
        self.context.update(kwargs)


class OperationHandler:
    """Handles operation logging and error enrichment."""

    def __init__(self, logger: Optional[Union[logging.Logger, ContextAwareLogger]] = None):
        self.logger = logger if logger is not None else get_logger()

    @contextmanager
    def operation(self, name: str, **context):
        tenant_id = TenantContext.get_current_tenant_id()
        if tenant_id and LogContextKey.TENANT_ID.value not in context:
            context[LogContextKey.TENANT_ID.value] = tenant_id
        user_id = TenantContext.get_current_user_id()
        if user_id and LogContextKey.USER_ID.value not in context:
            context[LogContextKey.USER_ID.value] = user_id

        op_ctx = OperationContext(name, **context)
        ids = {
            LogContextKey.OPERATION_ID.value: op_ctx.operation_id,
            LogContextKey.CORRELATION_ID.value: op_ctx.correlation_id,
        }

        self.logger.debug(f"ENTER: {name}", extra={**context, **ids})

        try:
            yield op_ctx
        except BaseError as e:
            e.add_context(
                operation_name=name,
                operation_id=op_ctx.operation_id,
                operation_duration_ms=op_ctx.duration_ms,
            )
            # BaseError already logged itself; this line ties it to the operation
            self.logger.warning(
                f"ERROR: {name} -> {e.error_code.value}: {e.message}",
                extra={
                    **context,
                    **ids,
                    LogContextKey.DURATION_MS.value: round(op_ctx.duration_ms, 2),
                    "error_id": e.error_id,
                    LogContextKey.ERROR_CODE.value: e.error_code.value,
                    LogContextKey.STATUS.value: OperationStatus.ERROR.value,
                },
            )
            raise
        except Exception as e:
            self.logger.exception(
                f"ERROR: {name} -> {type(e).__name__}: {str(e)}",
                extra={
                    **context,
                    **ids,
                    LogContextKey.DURATION_MS.value: round(op_ctx.duration_ms, 2),
                    "error_type": type(e).__name__,
                    LogContextKey.STATUS.value: OperationStatus.ERROR.value,
                },
            )
            raise
        else:
            self.logger.info(
                f"EXIT: {name}",
                extra={
                    **context,
                    **ids,
                    LogContextKey.DURATION_MS.value: round(op_ctx.duration_ms, 2),
                    LogContextKey.STATUS.value: OperationStatus.SUCCESS.value,
                },
            )


F = TypeVar("F", bound=Callable[..., Any])


def operation(name: Union[Optional[str], Callable] = None):
    """
    Decorator for service operations.

    Arguments are never logged: callbacks and refreshes carry
    authorization codes and tokens.

    Args:
        name: Optional operation name. Defaults to ``module.Class.function``.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            if name is not None:
                op_name = name
            else:
                op_name = func.__name__
                if args and hasattr(args[0], func.__name__):
                    op_name = f"{args[0].__class__.__name__}.{op_name}"
                op_name = f"{func.__module__.split('.')[-1]}.{op_name}"

            context = {LogContextKey.SOURCE_MODULE.value: func.__module__}
            for key in (LogContextKey.CONNECTION_ID.value, LogContextKey.PROVIDER_NAME.value):
                if key in kwargs and isinstance(kwargs[key], str):
                    context[key] = kwargs[key]

            handler = OperationHandler()
            with handler.operation(op_name, **context):
                return func(*args, **kwargs)

        return cast(F, wrapper)

    if callable(name):
        func, name = name, None
        return decorator(func)

    return decorator
