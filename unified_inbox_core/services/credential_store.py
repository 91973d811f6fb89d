"""
Credential store: persistence and invariant enforcement for platform connections.

Every state change is a conditional UPDATE on ``version`` so that stateless
instances racing on the same row resolve in the database:

- a write whose resulting state is not CONNECTED clears the secrets in the
  same statement, so a token never outlives its connection;
- at most one CONNECTED row exists per (tenant, user, provider), backed by
  the partial unique index on ``platform_connections``;
- a lost conditional write is re-read and reapplied once, then surfaces as
  ``ConflictError``.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..context.operation_context import operation
from ..db.db_base import ensure_aware, utc_now
from ..db.db_connection_models import PlatformConnection
from ..enums import CredentialStateEnum
from ..exceptions import ConflictError, ValidationError, not_found
from ..schemas.connection_schemas import (
    ConnectionChanges,
    ConnectionCredentials,
    PlatformConnectionRead,
)
from ..utils.encryption_utils import decrypt_token, encrypt_token
from .base_service import SessionManagedService

RESOURCE = "PlatformConnection"

ChangeBuilder = Callable[[PlatformConnectionRead], Optional[ConnectionChanges]]


class _StaleVersion(Exception):
    """Internal signal: the conditional UPDATE matched no row."""


class CredentialStore(SessionManagedService):
    """Owns every read and write of ``platform_connections``."""

    # Queries

    def _scoped(self, session: Session, tenant_id: str, user_id: Optional[str] = None):
        self._check_tenant_scope(tenant_id)
        query = session.query(PlatformConnection).filter(PlatformConnection.tenant_id == tenant_id)
        if user_id is not None:
            query = query.filter(PlatformConnection.user_id == user_id)
        return query

    def _for_key(self, session: Session, tenant_id: str, user_id: str, provider_name: str):
        return (
            self._scoped(session, tenant_id, user_id)
            .filter(PlatformConnection.provider_name == provider_name)
            .order_by(PlatformConnection.created_at.desc(), PlatformConnection.id.desc())
        )

    def _load(
        self,
        session: Session,
        tenant_id: str,
        connection_id: str,
        user_id: Optional[str] = None,
    ) -> PlatformConnection:
        row = (
            self._scoped(session, tenant_id, user_id)
            .filter(PlatformConnection.id == connection_id)
            .populate_existing()
            .first()
        )
        if row is None:
            # Same error whether the id is missing or belongs to another tenant
            raise not_found(RESOURCE, connection_id=connection_id)
        return row

    @operation()
    def get(
        self, tenant_id: str, user_id: str, provider_name: str
    ) -> Optional[PlatformConnectionRead]:
        """The live row for the key: the CONNECTED one if any, else the newest."""
        with self.transaction() as session:
            rows = self._for_key(session, tenant_id, user_id, provider_name).all()
            if not rows:
                return None
            for row in rows:
                if row.credential_state == CredentialStateEnum.CONNECTED.value:
                    return PlatformConnectionRead.model_validate(row)
            return PlatformConnectionRead.model_validate(rows[0])

    @operation()
    def get_connected_or_none(
        self, tenant_id: str, user_id: str, provider_name: str
    ) -> Optional[PlatformConnectionRead]:
        with self.transaction() as session:
            row = (
                self._for_key(session, tenant_id, user_id, provider_name)
                .filter(PlatformConnection.credential_state == CredentialStateEnum.CONNECTED.value)
                .first()
            )
            return PlatformConnectionRead.model_validate(row) if row else None

    @operation()
    def get_by_id(
        self, tenant_id: str, connection_id: str, user_id: Optional[str] = None
    ) -> PlatformConnectionRead:
        with self.transaction() as session:
            return PlatformConnectionRead.model_validate(
                self._load(session, tenant_id, connection_id, user_id)
            )

    @operation()
    def get_credentials(
        self, tenant_id: str, connection_id: str, user_id: Optional[str] = None
    ) -> ConnectionCredentials:
        """Connection plus decrypted secrets. Never log the result."""
        with self.transaction() as session:
            row = self._load(session, tenant_id, connection_id, user_id)
            return ConnectionCredentials(
                connection=PlatformConnectionRead.model_validate(row),
                access_token=decrypt_token(
                    session, row.access_token, row.tenant_id, row.provider_name
                ),
                refresh_token=decrypt_token(
                    session, row.refresh_token, row.tenant_id, row.provider_name
                ),
            )

    @operation()
    def list_connections(
        self, tenant_id: str, user_id: str, include_history: bool = False
    ) -> List[PlatformConnectionRead]:
        """
        Connections of one user, newest first.

        Without ``include_history`` only the live row per provider is returned.
        """
        with self.transaction() as session:
            rows = (
                self._scoped(session, tenant_id, user_id)
                .order_by(PlatformConnection.created_at.desc(), PlatformConnection.id.desc())
                .all()
            )
            connections = [PlatformConnectionRead.model_validate(row) for row in rows]

        if include_history:
            return connections

        live: Dict[str, PlatformConnectionRead] = {}
        for connection in connections:
            current = live.get(connection.provider_name)
            if current is None or (connection.is_connected and not current.is_connected):
                live[connection.provider_name] = connection
        return sorted(live.values(), key=lambda c: c.created_at, reverse=True)

    # Writes

    def _values_for(
        self,
        session: Session,
        row: PlatformConnection,
        changes: ConnectionChanges,
    ) -> Dict[str, Any]:
        """Column values for one UPDATE, enforcing the secrets/state coupling."""
        data = changes.model_dump(exclude_unset=True)
        current_state = CredentialStateEnum(row.credential_state)
        new_state = changes.credential_state or current_state

        values: Dict[str, Any] = {
            "credential_state": new_state.value,
            "version": PlatformConnection.version + 1,
            "updated_at": utc_now(),
        }
        if "display_name" in data:
            values["display_name"] = changes.display_name
        if "provider_metadata" in data:
            values["provider_metadata"] = changes.provider_metadata or {}

        if new_state != CredentialStateEnum.CONNECTED:
            values["access_token"] = None
            values["refresh_token"] = None
            values["token_expiry"] = None
            return values

        if "access_token" in data:
            if not changes.access_token:
                raise ValidationError(
                    "A connected credential requires an access token",
                    field="access_token",
                    connection_id=row.id,
                )
            values["access_token"] = encrypt_token(
                session, changes.access_token, row.tenant_id, row.provider_name
            )
        elif current_state != CredentialStateEnum.CONNECTED:
            raise ValidationError(
                "A connected credential requires an access token",
                field="access_token",
                connection_id=row.id,
            )
        if current_state != CredentialStateEnum.CONNECTED:
            values["connected_at"] = utc_now()
        if "refresh_token" in data:
            values["refresh_token"] = encrypt_token(
                session, changes.refresh_token, row.tenant_id, row.provider_name
            )
        if "token_expiry" in data:
            values["token_expiry"] = ensure_aware(changes.token_expiry)
        return values

    def _conditional_update(
        self,
        session: Session,
        row: PlatformConnection,
        expected_version: int,
        changes: ConnectionChanges,
    ) -> None:
        values = self._values_for(session, row, changes)
        matched = (
            session.query(PlatformConnection)
            .filter(
                PlatformConnection.id == row.id,
                PlatformConnection.tenant_id == row.tenant_id,
                PlatformConnection.version == expected_version,
            )
            .update(values, synchronize_session=False)
        )
        if matched != 1:
            raise _StaleVersion()

    @operation()
    def create_pending(
        self,
        tenant_id: str,
        user_id: str,
        provider_name: str,
        display_name: Optional[str] = None,
    ) -> PlatformConnectionRead:
        """Insert a fresh PENDING_AUTHORIZATION row for a new connect flow."""
        with self.transaction() as session:
            row = PlatformConnection(
                tenant_id=tenant_id,
                user_id=user_id,
                provider_name=provider_name,
                display_name=display_name,
                credential_state=CredentialStateEnum.PENDING_AUTHORIZATION.value,
                provider_metadata={},
                version=1,
            )
            session.add(row)
            session.flush()
            return PlatformConnectionRead.model_validate(row)

    @operation()
    def upsert(
        self,
        tenant_id: str,
        user_id: str,
        provider_name: str,
        changes: ConnectionChanges,
    ) -> PlatformConnectionRead:
        """
        Apply ``changes`` to the newest reusable row for the key.

        Reusable rows are PENDING_AUTHORIZATION, EXPIRED, or DISCONNECTED
        without ever having been connected. Superseded and revoked rows stay
        untouched as history, so a new row is inserted when none qualifies;
        a CONNECTED row keeps serving until a new authorization completes.
        A change to CONNECTED goes through ``mark_connected`` so the previous
        connection is superseded atomically.
        """
        reusable = or_(
            PlatformConnection.credential_state.in_(
                [
                    CredentialStateEnum.PENDING_AUTHORIZATION.value,
                    CredentialStateEnum.EXPIRED.value,
                ]
            ),
            and_(
                PlatformConnection.credential_state == CredentialStateEnum.DISCONNECTED.value,
                PlatformConnection.connected_at.is_(None),
            ),
        )
        with self.transaction() as session:
            existing = (
                self._for_key(session, tenant_id, user_id, provider_name)
                .filter(reusable)
                .first()
            )
            if existing is None:
                existing = PlatformConnection(
                    tenant_id=tenant_id,
                    user_id=user_id,
                    provider_name=provider_name,
                    credential_state=CredentialStateEnum.DISCONNECTED.value,
                    provider_metadata={},
                    version=1,
                )
                session.add(existing)
                session.flush()
            target = PlatformConnectionRead.model_validate(existing)

        if changes.credential_state == CredentialStateEnum.CONNECTED:
            return self.mark_connected(
                tenant_id,
                target.id,
                access_token=changes.access_token,
                refresh_token=changes.refresh_token,
                token_expiry=changes.token_expiry,
                provider_metadata=changes.provider_metadata,
                display_name=changes.display_name,
            )
        return self.update_with_retry(tenant_id, target.id, lambda _current: changes)

    @operation()
    def compare_and_swap(
        self,
        tenant_id: str,
        connection_id: str,
        expected_version: int,
        changes: ConnectionChanges,
    ) -> Optional[PlatformConnectionRead]:
        """
        Write ``changes`` only if the row is still at ``expected_version``.

        Returns the updated connection, or None when another writer got there
        first.
        """
        with self.transaction() as session:
            row = self._load(session, tenant_id, connection_id)
            try:
                self._conditional_update(session, row, expected_version, changes)
            except _StaleVersion:
                return None
            session.expire_all()
            return PlatformConnectionRead.model_validate(self._load(session, tenant_id, connection_id))

    @operation()
    def update_with_retry(
        self,
        tenant_id: str,
        connection_id: str,
        build_changes: ChangeBuilder,
        user_id: Optional[str] = None,
    ) -> PlatformConnectionRead:
        """
        Read, build changes from the current row, conditionally write.

        ``build_changes`` may return None to leave the row untouched. A lost
        write is rebuilt from a fresh read once before ``ConflictError``.
        """
        for _attempt in range(2):
            current = self.get_by_id(tenant_id, connection_id, user_id)
            changes = build_changes(current)
            if changes is None:
                return current
            updated = self.compare_and_swap(tenant_id, connection_id, current.version, changes)
            if updated is not None:
                return updated
            self.logger.info(
                "Conditional write lost, retrying",
                extra={"connection_id": connection_id, "version": current.version},
            )
        raise ConflictError(
            "Connection was modified concurrently",
            connection_id=connection_id,
        )

    @operation()
    def mark_connected(
        self,
        tenant_id: str,
        connection_id: str,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
        token_expiry: Optional[datetime] = None,
        provider_metadata: Optional[Dict[str, Any]] = None,
        display_name: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PlatformConnectionRead:
        """
        Superseding write: any other CONNECTED row for the same key becomes
        DISCONNECTED and the target becomes CONNECTED, in one transaction.
        """
        if not access_token:
            raise ValidationError(
                "A connected credential requires an access token",
                field="access_token",
                connection_id=connection_id,
            )

        fields: Dict[str, Any] = {
            "credential_state": CredentialStateEnum.CONNECTED,
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_expiry": token_expiry,
            "provider_metadata": provider_metadata or {},
        }
        if display_name is not None:
            fields["display_name"] = display_name
        changes = ConnectionChanges(**fields)
        superseded = ConnectionChanges(credential_state=CredentialStateEnum.DISCONNECTED)

        last_error: Optional[Exception] = None
        for _attempt in range(2):
            try:
                with self.transaction() as session:
                    row = self._load(session, tenant_id, connection_id)
                    version = expected_version if expected_version is not None else row.version
                    others = (
                        self._for_key(session, tenant_id, row.user_id, row.provider_name)
                        .filter(
                            PlatformConnection.id != row.id,
                            PlatformConnection.credential_state
                            == CredentialStateEnum.CONNECTED.value,
                        )
                        .all()
                    )
                    superseded_ids = [other.id for other in others]
                    for other in others:
                        self._conditional_update(session, other, other.version, superseded)
                    self._conditional_update(session, row, version, changes)
                    session.flush()
                    session.expire_all()
                    connected = PlatformConnectionRead.model_validate(
                        self._load(session, tenant_id, connection_id)
                    )
                self.logger.info(
                    "Connection marked connected",
                    extra={
                        "connection_id": connection_id,
                        "provider_name": connected.provider_name,
                        "superseded": superseded_ids,
                    },
                )
                return connected
            except (_StaleVersion, IntegrityError) as e:
                last_error = e
                # An explicit expected version cannot be re-read into validity
                if expected_version is not None and isinstance(e, _StaleVersion):
                    break
                self.logger.info(
                    "Superseding write lost a race, retrying",
                    extra={"connection_id": connection_id, "error_type": type(e).__name__},
                )

        raise ConflictError(
            "Another connection for this provider was written concurrently",
            cause=last_error if isinstance(last_error, IntegrityError) else None,
            connection_id=connection_id,
        )

    @operation()
    def mark_disconnected(
        self,
        tenant_id: str,
        connection_id: str,
        only_if_state: Optional[CredentialStateEnum] = None,
    ) -> PlatformConnectionRead:
        """
        Move a connection to DISCONNECTED, clearing secrets.

        With ``only_if_state`` the write is skipped unless the row is still
        in that state (a failed callback must not clobber a newer success).
        """

        def build(current: PlatformConnectionRead) -> Optional[ConnectionChanges]:
            if current.credential_state == CredentialStateEnum.DISCONNECTED:
                return None
            if only_if_state is not None and current.credential_state != only_if_state:
                return None
            return ConnectionChanges(credential_state=CredentialStateEnum.DISCONNECTED)

        return self.update_with_retry(tenant_id, connection_id, build)

    @operation()
    def revoke(
        self, tenant_id: str, connection_id: str, user_id: Optional[str] = None
    ) -> PlatformConnectionRead:
        """
        Soft delete: DISCONNECTED with secrets cleared, row retained.

        Idempotent; a missing or foreign id raises ``NotFoundError``.
        """

        def build(current: PlatformConnectionRead) -> Optional[ConnectionChanges]:
            if current.credential_state == CredentialStateEnum.DISCONNECTED:
                return None
            return ConnectionChanges(credential_state=CredentialStateEnum.DISCONNECTED)

        revoked = self.update_with_retry(tenant_id, connection_id, build, user_id=user_id)
        self.logger.info(
            "Connection revoked",
            extra={"connection_id": connection_id, "provider_name": revoked.provider_name},
        )
        return revoked
