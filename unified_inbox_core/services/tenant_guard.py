"""
Multi-tenant query guard.

``TenantGuard`` is the only entry point the HTTP layer uses. Every call
takes the caller's ``(tenant_id, user_id)`` first and runs inside
``tenant_context`` so that lower layers can refuse queries for any other
tenant. An isolation breach surfaces exactly like a missing resource.
"""

from contextlib import contextmanager
from typing import List, Optional

from ..context.tenant_context import tenant_context
from ..enums import ConversationStatusEnum, MessageOriginEnum
from ..exceptions import AuthorizationError, BaseError, not_found
from ..providers.registry import ProviderRegistry
from ..schemas.connection_schemas import (
    AuthorizationRedirect,
    PlatformConnectionRead,
    ProviderStatus,
)
from ..schemas.message_schemas import (
    AnalyticsRead,
    ConversationRead,
    InboundMessage,
    IngestResult,
    MessageRead,
    SyncResult,
)
from .authorization_service import AuthorizationService
from .base_service import SessionManagedService
from .credential_store import CredentialStore
from .ingestion_service import IngestionService
from .token_refresh_service import ConnectionLockRegistry, TokenRefreshService


class TenantGuard(SessionManagedService):
    """Tenant-scoped facade over the connection and inbox services."""

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        locks: Optional[ConnectionLockRegistry] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.registry = registry or ProviderRegistry.from_config(self.config)
        shared = {
            "db_manager": self._db_manager,
            "session": self._session,
            "config": self.config,
        }
        self.store = CredentialStore(**shared)
        self.authorization = AuthorizationService(self.store, self.registry, **shared)
        self.refresh = TokenRefreshService(self.store, self.registry, locks=locks, **shared)
        self.ingestion = IngestionService(self.store, self.refresh, self.registry, **shared)

    @contextmanager
    def _scope(
        self,
        tenant_id: str,
        user_id: str,
        operation: str,
        resource_type: str = "Resource",
        **identifiers,
    ):
        with tenant_context(tenant_id, user_id):
            try:
                yield
            except AuthorizationError:
                # Indistinguishable from a missing id
                raise not_found(resource_type, **identifiers) from None
            except BaseError:
                raise
            except Exception as e:
                self._handle_service_exception(operation, e, identifiers.get("connection_id"))

    def _connection_scope(self, tenant_id: str, user_id: str, operation: str, connection_id: str):
        return self._scope(
            tenant_id, user_id, operation, "PlatformConnection", connection_id=connection_id
        )

    def _conversation_scope(
        self, tenant_id: str, user_id: str, operation: str, conversation_id: str
    ):
        return self._scope(
            tenant_id, user_id, operation, "Conversation", conversation_id=conversation_id
        )

    # Connections

    def initiate_authorization(
        self,
        tenant_id: str,
        user_id: str,
        provider_name: str,
        redirect_uri: str,
        scopes: Optional[List[str]] = None,
    ) -> AuthorizationRedirect:
        with self._scope(
            tenant_id, user_id, "initiate_authorization", "Provider", provider_name=provider_name
        ):
            return self.authorization.initiate(
                tenant_id,
                user_id,
                provider_name=provider_name,
                redirect_uri=redirect_uri,
                scopes=scopes,
            )

    def complete_authorization(
        self,
        tenant_id: str,
        user_id: str,
        provider_name: str,
        code: Optional[str],
        state: Optional[str],
    ) -> PlatformConnectionRead:
        with self._scope(
            tenant_id, user_id, "complete_authorization", "Provider", provider_name=provider_name
        ):
            return self.authorization.callback(
                tenant_id, user_id, provider_name=provider_name, code=code, state=state
            )

    def revoke_connection(
        self, tenant_id: str, user_id: str, connection_id: str
    ) -> PlatformConnectionRead:
        with self._connection_scope(tenant_id, user_id, "revoke_connection", connection_id):
            return self.authorization.revoke(tenant_id, user_id, connection_id=connection_id)

    def get_connection(
        self, tenant_id: str, user_id: str, connection_id: str
    ) -> PlatformConnectionRead:
        with self._connection_scope(tenant_id, user_id, "get_connection", connection_id):
            return self.store.get_by_id(tenant_id, connection_id=connection_id, user_id=user_id)

    def list_connections(
        self, tenant_id: str, user_id: str, include_history: bool = False
    ) -> List[PlatformConnectionRead]:
        with self._scope(tenant_id, user_id, "list_connections"):
            return self.store.list_connections(
                tenant_id, user_id, include_history=include_history
            )

    def get_provider_status(self, tenant_id: str, user_id: str) -> List[ProviderStatus]:
        """Configured and connected flags for every registered provider."""
        with self._scope(tenant_id, user_id, "get_provider_status"):
            live = {c.provider_name: c for c in self.store.list_connections(tenant_id, user_id)}
            statuses = []
            for client in self.registry.clients():
                connection = live.get(client.provider_name)
                statuses.append(
                    ProviderStatus(
                        provider_name=client.provider_name,
                        label=client.label,
                        configured=client.is_configured(),
                        connected=bool(connection and connection.is_connected),
                        connection_id=connection.id if connection else None,
                        display_name=connection.display_name if connection else None,
                        credential_state=connection.credential_state if connection else None,
                    )
                )
            return statuses

    def get_valid_token(self, tenant_id: str, user_id: str, connection_id: str) -> str:
        with self._connection_scope(tenant_id, user_id, "get_valid_token", connection_id):
            return self.refresh.get_valid_token(
                tenant_id, connection_id=connection_id, user_id=user_id
            )

    # Messages

    def ingest(
        self, tenant_id: str, user_id: str, connection_id: str, raw_message: InboundMessage
    ) -> IngestResult:
        with self._connection_scope(tenant_id, user_id, "ingest", connection_id):
            return self.ingestion.ingest(
                tenant_id, user_id, connection_id=connection_id, raw_message=raw_message
            )

    def send_message(
        self,
        tenant_id: str,
        user_id: str,
        connection_id: str,
        target: str,
        content: str,
        origin: MessageOriginEnum = MessageOriginEnum.HUMAN,
    ) -> IngestResult:
        with self._connection_scope(tenant_id, user_id, "send_message", connection_id):
            return self.ingestion.send_message(
                tenant_id,
                user_id,
                connection_id=connection_id,
                target=target,
                content=content,
                origin=origin,
            )

    def sync_connection(
        self, tenant_id: str, user_id: str, connection_id: str, cursor: Optional[str] = None
    ) -> SyncResult:
        with self._connection_scope(tenant_id, user_id, "sync_connection", connection_id):
            return self.ingestion.sync_connection(
                tenant_id, user_id, connection_id=connection_id, cursor=cursor
            )

    def list_conversations(
        self,
        tenant_id: str,
        user_id: str,
        connection_id: Optional[str] = None,
        status: Optional[ConversationStatusEnum] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ConversationRead]:
        with self._scope(tenant_id, user_id, "list_conversations"):
            return self.ingestion.list_conversations(
                tenant_id,
                user_id,
                connection_id=connection_id,
                status=status,
                limit=limit,
                offset=offset,
            )

    def list_messages(
        self,
        tenant_id: str,
        user_id: str,
        conversation_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[MessageRead]:
        with self._conversation_scope(tenant_id, user_id, "list_messages", conversation_id):
            return self.ingestion.list_messages(
                tenant_id, user_id, conversation_id, limit=limit, offset=offset
            )

    def archive_conversation(
        self, tenant_id: str, user_id: str, conversation_id: str
    ) -> ConversationRead:
        with self._conversation_scope(
            tenant_id, user_id, "archive_conversation", conversation_id
        ):
            return self.ingestion.set_conversation_status(
                tenant_id, user_id, conversation_id, ConversationStatusEnum.ARCHIVED
            )

    def get_analytics(self, tenant_id: str, user_id: str) -> AnalyticsRead:
        with self._scope(tenant_id, user_id, "get_analytics"):
            return self.ingestion.get_analytics(tenant_id, user_id)

    def close(self) -> None:
        self.registry.close()
