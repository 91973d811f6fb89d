"""
Authorization state machine for provider connect flows.

Drives DISCONNECTED -> PENDING_AUTHORIZATION -> CONNECTED using persisted,
single-use CSRF handshakes:

- ``initiate`` issues an unguessable state with a TTL and builds the
  provider consent URL around it;
- ``callback`` consumes the handshake with one conditional DELETE, so of two
  racing callbacks exactly one proceeds;
- every failure after consumption leaves the pending row DISCONNECTED.
"""

import secrets
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from sqlalchemy import and_, delete, not_, select, update

from ..constants import CallbackReason
from ..context.operation_context import operation
from ..db.db_base import ensure_aware, utc_now
from ..db.db_connection_models import AuthorizationHandshake, PlatformConnection
from ..enums import CredentialStateEnum
from ..exceptions import (
    BaseError,
    ConflictError,
    ErrorCode,
    ExternalProviderError,
    HandshakeError,
    ValidationError,
)
from ..providers.registry import ProviderRegistry
from ..schemas.connection_schemas import (
    AuthorizationRedirect,
    ConnectionChanges,
    PlatformConnectionRead,
    TokenGrant,
)
from .base_service import SessionManagedService
from .credential_store import CredentialStore


class _ClaimedHandshake(NamedTuple):
    connection_id: str
    redirect_uri: str
    expires_at: datetime


class AuthorizationService(SessionManagedService):
    """Issues and validates handshakes and owns the connect transitions."""

    def __init__(self, store: CredentialStore, registry: ProviderRegistry, **kwargs):
        super().__init__(**kwargs)
        self.store = store
        self.registry = registry

    @property
    def handshake_ttl(self) -> timedelta:
        return timedelta(seconds=self.config.authorization.handshake_ttl_seconds)

    @operation()
    def initiate(
        self,
        tenant_id: str,
        user_id: str,
        provider_name: str,
        redirect_uri: str,
        scopes: Optional[List[str]] = None,
    ) -> AuthorizationRedirect:
        """
        Start a connect flow.

        Reuses the newest pending, expired or never-connected row for the key
        (or creates one) in PENDING_AUTHORIZATION; history rows are left
        alone and an existing CONNECTED row keeps serving until the new
        authorization completes.
        """
        client = self.registry.get(provider_name)
        if not client.is_configured():
            raise ValidationError(
                f"Provider {provider_name} is not configured",
                field="provider_name",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                provider_name=provider_name,
            )
        if not redirect_uri:
            raise ValidationError("redirect_uri is required", field="redirect_uri")

        connection = self.store.upsert(
            tenant_id,
            user_id,
            provider_name,
            ConnectionChanges(credential_state=CredentialStateEnum.PENDING_AUTHORIZATION),
        )

        state = secrets.token_urlsafe(self.config.authorization.state_token_bytes)
        issued_at = utc_now()
        expires_at = issued_at + self.handshake_ttl

        with self.transaction() as session:
            session.add(
                AuthorizationHandshake(
                    state=state,
                    tenant_id=tenant_id,
                    user_id=user_id,
                    provider_name=provider_name,
                    connection_id=connection.id,
                    redirect_uri=redirect_uri,
                    issued_at=issued_at,
                    expires_at=expires_at,
                )
            )

        url = client.build_authorization_url(state, redirect_uri, scopes)
        self.logger.info(
            "Authorization initiated",
            extra={
                "connection_id": connection.id,
                "provider_name": provider_name,
                "expires_at": expires_at.isoformat(),
            },
        )
        return AuthorizationRedirect(
            url=url, state=state, connection_id=connection.id, expires_at=expires_at
        )

    def _consume_handshake(
        self, tenant_id: str, user_id: str, provider_name: str, state: str
    ) -> _ClaimedHandshake:
        """
        Atomic check-and-delete; the DELETE rowcount decides the single winner.

        A state issued to another tenant, user or provider is consumed as
        well and its pending connection released before ``mismatch`` is
        raised, so it cannot be replayed.
        """
        self._check_tenant_scope(tenant_id)
        scope = and_(
            AuthorizationHandshake.state == state,
            AuthorizationHandshake.tenant_id == tenant_id,
            AuthorizationHandshake.user_id == user_id,
            AuthorizationHandshake.provider_name == provider_name,
        )
        if self._burn_mismatched(scope, state):
            raise HandshakeError(
                "Authorization state does not match this request",
                reason=CallbackReason.MISMATCH.value,
                provider_name=provider_name,
            )
        with self.transaction() as session:
            handshake = session.execute(
                select(AuthorizationHandshake).where(scope)
            ).scalar_one_or_none()
            if handshake is None:
                raise HandshakeError(
                    "Authorization already completed or never started",
                    reason=CallbackReason.ALREADY_COMPLETED.value,
                    provider_name=provider_name,
                )
            claimed_handshake = _ClaimedHandshake(
                connection_id=handshake.connection_id,
                redirect_uri=handshake.redirect_uri,
                expires_at=ensure_aware(handshake.expires_at),
            )
            claimed = session.execute(
                delete(AuthorizationHandshake)
                .where(scope)
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != 1:
                raise HandshakeError(
                    "Authorization already completed",
                    reason=CallbackReason.ALREADY_COMPLETED.value,
                    provider_name=provider_name,
                )
            return claimed_handshake

    def _burn_mismatched(self, scope, state: str) -> bool:
        """Delete a handshake that exists outside ``scope``; True when one was deleted."""
        with self.transaction() as session:
            issued = session.execute(
                select(AuthorizationHandshake).where(
                    AuthorizationHandshake.state == state, not_(scope)
                )
            ).scalar_one_or_none()
            if issued is None:
                return False
            burnt = session.execute(
                delete(AuthorizationHandshake)
                .where(AuthorizationHandshake.state == state)
                .execution_options(synchronize_session=False)
            ).rowcount
            if burnt != 1:
                return False
            # The owner may be another tenant, so release the row directly
            session.execute(
                update(PlatformConnection)
                .where(
                    PlatformConnection.id == issued.connection_id,
                    PlatformConnection.credential_state
                    == CredentialStateEnum.PENDING_AUTHORIZATION.value,
                )
                .values(
                    credential_state=CredentialStateEnum.DISCONNECTED.value,
                    version=PlatformConnection.version + 1,
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
        self.logger.warning(
            "Authorization state used outside its scope; handshake consumed",
            extra={"connection_id": issued.connection_id, "provider_name": issued.provider_name},
        )
        return True

    @operation()
    def callback(
        self,
        tenant_id: str,
        user_id: str,
        provider_name: str,
        code: Optional[str],
        state: Optional[str],
    ) -> PlatformConnectionRead:
        """
        Complete a connect flow.

        Raises:
            HandshakeError: unknown, replayed or expired state
            ValidationError: missing authorization code
            ExternalProviderError: code exchange failed or timed out
            ConflictError: superseding write lost twice
        """
        if not state:
            raise HandshakeError(
                "Authorization state is missing",
                reason=CallbackReason.MISMATCH.value,
                provider_name=provider_name,
            )

        handshake = self._consume_handshake(tenant_id, user_id, provider_name, state)
        connection_id = handshake.connection_id

        if handshake.expires_at <= utc_now():
            self._abandon(tenant_id, connection_id)
            raise HandshakeError(
                "Authorization request expired",
                reason=CallbackReason.EXPIRED.value,
                connection_id=connection_id,
            )

        if not code:
            self._abandon(tenant_id, connection_id)
            raise ValidationError(
                "Authorization code is missing",
                field="code",
                connection_id=connection_id,
            )

        client = self.registry.get(provider_name)
        try:
            grant = client.exchange_code(code, handshake.redirect_uri)
        except BaseError:
            self._abandon(tenant_id, connection_id)
            raise
        except Exception as e:
            self._abandon(tenant_id, connection_id)
            raise ExternalProviderError(
                f"Code exchange with {provider_name} failed",
                provider_name=provider_name,
                connection_id=connection_id,
                cause=e,
            ) from e

        try:
            return self._complete(tenant_id, connection_id, provider_name, grant)
        except ConflictError:
            self._abandon(tenant_id, connection_id)
            raise

    def _complete(
        self, tenant_id: str, connection_id: str, provider_name: str, grant: TokenGrant
    ) -> PlatformConnectionRead:
        client = self.registry.get(provider_name)
        token_expiry = None
        if grant.expires_in is not None:
            token_expiry = utc_now() + timedelta(seconds=grant.expires_in)

        connected = self.store.mark_connected(
            tenant_id,
            connection_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            token_expiry=token_expiry,
            provider_metadata=grant.provider_metadata,
            display_name=client.display_name(grant.provider_metadata),
        )
        self.logger.info(
            "Authorization completed",
            extra={
                "connection_id": connection_id,
                "provider_name": provider_name,
                "display_name": connected.display_name,
            },
        )
        return connected

    def _abandon(self, tenant_id: str, connection_id: str) -> None:
        """Pending row back to DISCONNECTED; a row that moved on is left alone."""
        self.store.mark_disconnected(
            tenant_id,
            connection_id,
            only_if_state=CredentialStateEnum.PENDING_AUTHORIZATION,
        )

    @operation()
    def revoke(self, tenant_id: str, user_id: str, connection_id: str) -> PlatformConnectionRead:
        """Disconnect immediately; repeat calls are no-ops."""
        return self.store.revoke(tenant_id, connection_id, user_id=user_id)

    @operation()
    def purge_expired_handshakes(self, now: Optional[datetime] = None) -> int:
        """
        Delete expired handshakes and release their still-pending connections.

        Returns the number of handshakes removed.
        """
        cutoff = ensure_aware(now) or utc_now()
        with self.transaction() as session:
            expired = (
                session.execute(
                    select(AuthorizationHandshake).where(AuthorizationHandshake.expires_at <= cutoff)
                )
                .scalars()
                .all()
            )
            targets = [(h.state, h.tenant_id, h.connection_id) for h in expired]

        purged = 0
        for state, tenant_id, connection_id in targets:
            with self.transaction() as session:
                purged += session.execute(
                    delete(AuthorizationHandshake).where(AuthorizationHandshake.state == state)
                ).rowcount
            # A newer handshake may still be pending on the same row
            with self.transaction() as session:
                still_pending = session.execute(
                    select(AuthorizationHandshake.state).where(
                        AuthorizationHandshake.connection_id == connection_id,
                        AuthorizationHandshake.expires_at > cutoff,
                    )
                ).first()
            if still_pending is None:
                self._abandon(tenant_id, connection_id)

        self.logger.info("Expired handshakes purged", extra={"purged": purged})
        return purged
