"""
Token refresh guard.

Hands out usable access tokens and refreshes them shortly before expiry.
Within one process refreshes of a connection are serialized by a lock so the
provider sees a single refresh; across instances the conditional write on
``version`` decides which refresh lands. A failed refresh is final: the
connection becomes EXPIRED and every caller is told to reconnect.
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from ..constants import AuthenticationReason
from ..context.operation_context import operation
from ..db.db_base import utc_now
from ..enums import CredentialStateEnum
from ..exceptions import AuthenticationError, ConflictError
from ..providers.registry import ProviderRegistry
from ..schemas.connection_schemas import (
    ConnectionChanges,
    ConnectionCredentials,
    PlatformConnectionRead,
    TokenGrant,
)
from .base_service import SessionManagedService
from .credential_store import CredentialStore


class ConnectionLockRegistry:
    """One lock per (tenant, connection), created on first use."""

    def __init__(self):
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def for_connection(self, tenant_id: str, connection_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault((tenant_id, connection_id), threading.Lock())


# Shared by every service instance in the process
_default_locks = ConnectionLockRegistry()


class TokenRefreshService(SessionManagedService):
    """Serializes and performs credential refresh before use."""

    def __init__(
        self,
        store: CredentialStore,
        registry: ProviderRegistry,
        locks: Optional[ConnectionLockRegistry] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.store = store
        self.registry = registry
        self.locks = locks or _default_locks

    @property
    def refresh_threshold(self) -> timedelta:
        return timedelta(seconds=self.config.authorization.refresh_threshold_seconds)

    def _needs_refresh(self, connection: PlatformConnectionRead, now: datetime) -> bool:
        if connection.token_expiry is None:
            return False
        return connection.token_expiry - now < self.refresh_threshold

    def _ensure_connected(self, connection: PlatformConnectionRead) -> None:
        if connection.credential_state == CredentialStateEnum.CONNECTED:
            return
        if connection.credential_state == CredentialStateEnum.EXPIRED:
            raise AuthenticationError(
                "Connection credentials expired; reconnect required",
                reason=AuthenticationReason.RECONNECT_REQUIRED.value,
                connection_id=connection.id,
                provider_name=connection.provider_name,
            )
        raise AuthenticationError(
            "Connection is not connected",
            reason=AuthenticationReason.NOT_CONNECTED.value,
            connection_id=connection.id,
            provider_name=connection.provider_name,
        )

    @operation()
    def get_valid_token(
        self, tenant_id: str, connection_id: str, user_id: Optional[str] = None
    ) -> str:
        """
        Return an access token that is valid for at least the refresh threshold.

        Raises:
            NotFoundError: unknown or foreign connection
            AuthenticationError: not connected, or refresh impossible
                (``reason == "reconnect_required"``)
            ConflictError: refreshed token could not be stored twice in a row
        """
        credentials = self.store.get_credentials(tenant_id, connection_id, user_id)
        self._ensure_connected(credentials.connection)
        if not self._needs_refresh(credentials.connection, utc_now()):
            return credentials.access_token

        with self.locks.for_connection(tenant_id, connection_id):
            # Another caller may have refreshed (or failed) while we waited
            credentials = self.store.get_credentials(tenant_id, connection_id, user_id)
            self._ensure_connected(credentials.connection)
            if not self._needs_refresh(credentials.connection, utc_now()):
                return credentials.access_token
            return self._refresh(tenant_id, credentials)

    def _refresh(self, tenant_id: str, credentials: ConnectionCredentials) -> str:
        connection = credentials.connection
        now = utc_now()

        if not credentials.refresh_token:
            if connection.token_expiry is not None and connection.token_expiry > now:
                return credentials.access_token
            self._expire(tenant_id, connection)
            raise AuthenticationError(
                "Access token expired and the provider issued no refresh token",
                reason=AuthenticationReason.RECONNECT_REQUIRED.value,
                connection_id=connection.id,
                provider_name=connection.provider_name,
            )

        client = self.registry.get(connection.provider_name)
        try:
            grant = client.refresh_token(credentials.refresh_token)
        except Exception as e:
            # Single attempt: any failure ends the credential
            self._expire(tenant_id, connection)
            raise AuthenticationError(
                "Token refresh failed; reconnect required",
                reason=AuthenticationReason.RECONNECT_REQUIRED.value,
                cause=e,
                connection_id=connection.id,
                provider_name=connection.provider_name,
            ) from e

        changes = self._changes_for(grant, credentials)
        updated = self.store.compare_and_swap(tenant_id, connection.id, connection.version, changes)
        if updated is not None:
            self.logger.info(
                "Access token refreshed",
                extra={"connection_id": connection.id, "provider_name": connection.provider_name},
            )
            return grant.access_token

        # Lost the conditional write: another instance refreshed or revoked
        fresh = self.store.get_credentials(tenant_id, connection.id)
        self._ensure_connected(fresh.connection)
        if not self._needs_refresh(fresh.connection, utc_now()):
            return fresh.access_token

        updated = self.store.compare_and_swap(
            tenant_id, connection.id, fresh.connection.version, changes
        )
        if updated is not None:
            return grant.access_token
        raise ConflictError(
            "Refreshed token could not be stored; connection changed concurrently",
            connection_id=connection.id,
        )

    def _changes_for(self, grant: TokenGrant, credentials: ConnectionCredentials) -> ConnectionChanges:
        token_expiry = None
        if grant.expires_in is not None:
            token_expiry = utc_now() + timedelta(seconds=grant.expires_in)
        return ConnectionChanges(
            credential_state=CredentialStateEnum.CONNECTED,
            access_token=grant.access_token,
            # Providers that do not rotate refresh tokens omit them
            refresh_token=grant.refresh_token or credentials.refresh_token,
            token_expiry=token_expiry,
        )

    def _expire(self, tenant_id: str, connection: PlatformConnectionRead) -> None:
        """EXPIRED with secrets cleared, unless someone else already moved the row on."""

        def build(current: PlatformConnectionRead) -> Optional[ConnectionChanges]:
            if current.version != connection.version:
                return None
            return ConnectionChanges(credential_state=CredentialStateEnum.EXPIRED)

        self.store.update_with_retry(tenant_id, connection.id, build)
        self.logger.warning(
            "Connection expired after failed refresh",
            extra={"connection_id": connection.id, "provider_name": connection.provider_name},
        )
