"""Service layer for connection lifecycle and message ingestion."""

from .authorization_service import AuthorizationService
from .base_service import SessionManagedService
from .credential_store import CredentialStore
from .ingestion_service import IngestionService
from .tenant_guard import TenantGuard
from .token_refresh_service import ConnectionLockRegistry, TokenRefreshService

__all__ = [
    "AuthorizationService",
    "ConnectionLockRegistry",
    "CredentialStore",
    "IngestionService",
    "SessionManagedService",
    "TenantGuard",
    "TokenRefreshService",
]
