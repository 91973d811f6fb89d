"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ..config import AppConfig, set_config
from ..db.db_config import close_db, initialize_db
from ..exceptions import BaseError
from ..services.tenant_guard import TenantGuard
from ..utils.logger import configure_logging
from .errors import base_error_handler
from .routes import router


def create_app(guard: Optional[TenantGuard] = None, config: Optional[AppConfig] = None) -> FastAPI:
    """
    Build the HTTP app around one ``TenantGuard``.

    Without an injected guard the app configures logging and the database
    from ``AppConfig`` and builds its own. The guard (and its provider HTTP
    clients) is closed on shutdown.
    """
    owns_db = guard is None
    if owns_db:
        if config is not None:
            set_config(config)
        configure_logging()
        initialize_db()
        guard = TenantGuard(config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        guard.close()
        if owns_db:
            close_db()

    app = FastAPI(
        title="Unified Inbox Core",
        description="Platform connections, token refresh and idempotent message ingestion",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.guard = guard
    app.add_exception_handler(BaseError, base_error_handler)
    app.include_router(router)
    return app
