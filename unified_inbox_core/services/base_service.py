"""
Base service with session management shared by all services.

Services never share a session across calls: each unit of work opens its own
session from the ``DatabaseManager`` so that concurrent callers (threads,
instances) only interact through the database.
"""

from contextlib import contextmanager
from typing import Generator, NoReturn, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import AppConfig, get_config
from ..context.tenant_context import TenantContext
from ..db.db_config import DatabaseManager, get_db_manager
from ..exceptions import AuthorizationError, BaseError, ErrorCode, RepositoryError, ServiceError
from ..utils.logger import get_logger


class SessionManagedService:
    """
    Service that opens a fresh database session per transaction.

    Pass ``session`` to run inside a caller-owned transaction instead; the
    service then neither commits nor closes it.
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        session: Optional[Session] = None,
        config: Optional[AppConfig] = None,
    ):
        self._db_manager = db_manager
        self._session = session
        self.config = config or get_config()
        self.logger = get_logger()

    @property
    def db_manager(self) -> DatabaseManager:
        if self._db_manager is None:
            self._db_manager = get_db_manager()
        return self._db_manager

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Context manager for transactional operations.

        Usage:
            with self.transaction() as session:
                session.add(...)
                # Auto-commits on success, rollback on exception
        """
        if self._session is not None:
            yield self._session
            return

        session = self.db_manager.new_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _check_tenant_scope(self, tenant_id: str) -> None:
        """A query for another tenant than the active context is an isolation breach."""
        current = TenantContext.get_current_tenant_id()
        if current is not None and current != tenant_id:
            raise AuthorizationError(requested_tenant_id=tenant_id, context_tenant_id=current)

    def _handle_service_exception(
        self, operation: str, exception: Exception, entity_id: Optional[str] = None
    ) -> NoReturn:
        """
        Re-raise our own errors untouched; wrap database and unexpected errors.
        """
        if isinstance(exception, BaseError):
            raise exception
        if isinstance(exception, SQLAlchemyError):
            raise RepositoryError(
                f"Database error in {operation}: {str(exception)}",
                cause=exception,
                operation=operation,
                entity_id=entity_id,
            ) from exception
        raise ServiceError(
            f"Error in {operation}: {str(exception)}",
            error_code=ErrorCode.INTERNAL_ERROR,
            operation=operation,
            entity_id=entity_id,
            cause=exception,
        ) from exception
