"""
Ingestion and dedup engine.

Records inbound and outbound messages exactly once per provider external id.
The unique (conversation_id, external_id) constraint is the arbiter: a
duplicate, whether found up front or raised by a concurrent insert, returns
the stored row and has no side effects. Message insert, conversation preview
and analytics counters change together in one transaction.
"""

from typing import List, Optional

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..context.operation_context import operation
from ..db.db_analytics_models import AnalyticsCounters
from ..db.db_base import utc_now
from ..db.db_conversation_models import Conversation, Message
from ..enums import ConversationStatusEnum, MessageDirectionEnum, MessageOriginEnum
from ..exceptions import ExternalProviderError, not_found
from ..providers.registry import ProviderRegistry
from ..schemas.message_schemas import (
    AnalyticsRead,
    ConversationRead,
    InboundMessage,
    IngestResult,
    MessageRead,
    SyncResult,
)
from .base_service import SessionManagedService
from .credential_store import CredentialStore
from .token_refresh_service import TokenRefreshService


class IngestionService(SessionManagedService):
    """Idempotent message recording plus the inbox read side."""

    def __init__(
        self,
        store: CredentialStore,
        refresh: TokenRefreshService,
        registry: ProviderRegistry,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.store = store
        self.refresh = refresh
        self.registry = registry

    # Conversations

    def _find_conversation(
        self, session: Session, tenant_id: str, connection_id: str, thread_external_id: str
    ) -> Optional[Conversation]:
        self._check_tenant_scope(tenant_id)
        return (
            session.query(Conversation)
            .filter(
                Conversation.tenant_id == tenant_id,
                Conversation.platform_connection_id == connection_id,
                Conversation.external_id == thread_external_id,
            )
            .first()
        )

    def _resolve_conversation(
        self, tenant_id: str, user_id: str, connection_id: str, raw: InboundMessage
    ) -> ConversationRead:
        """Find or create the thread; a concurrent create loses to the unique constraint."""
        with self.transaction() as session:
            existing = self._find_conversation(
                session, tenant_id, connection_id, raw.thread_external_id
            )
            if existing is not None:
                return ConversationRead.model_validate(existing)

        try:
            with self.transaction() as session:
                conversation = Conversation(
                    tenant_id=tenant_id,
                    user_id=user_id,
                    platform_connection_id=connection_id,
                    external_id=raw.thread_external_id,
                    participant_name=raw.participant_name,
                    status=ConversationStatusEnum.ACTIVE.value,
                )
                session.add(conversation)
                session.flush()
                return ConversationRead.model_validate(conversation)
        except IntegrityError:
            self.logger.info(
                "Conversation created concurrently, re-reading",
                extra={"connection_id": connection_id},
            )

        with self.transaction() as session:
            existing = self._find_conversation(
                session, tenant_id, connection_id, raw.thread_external_id
            )
            if existing is None:
                raise not_found("Conversation", external_id=raw.thread_external_id)
            return ConversationRead.model_validate(existing)

    def _find_message(
        self, session: Session, conversation_id: str, external_id: str
    ) -> Optional[Message]:
        return (
            session.query(Message)
            .filter(Message.conversation_id == conversation_id, Message.external_id == external_id)
            .first()
        )

    def _existing_result(
        self, tenant_id: str, conversation_id: str, external_id: str
    ) -> Optional[IngestResult]:
        with self.transaction() as session:
            message = self._find_message(session, conversation_id, external_id)
            if message is None:
                return None
            conversation = (
                session.query(Conversation)
                .filter(Conversation.tenant_id == tenant_id, Conversation.id == conversation_id)
                .one()
            )
            return IngestResult(
                message=MessageRead.model_validate(message),
                conversation=ConversationRead.model_validate(conversation),
                created=False,
            )

    # Analytics

    @staticmethod
    def _counter_increments(raw: InboundMessage) -> dict:
        increments = {"total_messages": AnalyticsCounters.total_messages + 1}
        if raw.direction == MessageDirectionEnum.FROM_AGENT:
            if raw.origin == MessageOriginEnum.GENERATED:
                increments["generated_responses"] = AnalyticsCounters.generated_responses + 1
            else:
                increments["manual_responses"] = AnalyticsCounters.manual_responses + 1
        return increments

    def _ensure_counters(self, tenant_id: str, user_id: str) -> None:
        with self.transaction() as session:
            exists = (
                session.query(AnalyticsCounters.id)
                .filter(
                    AnalyticsCounters.tenant_id == tenant_id,
                    AnalyticsCounters.user_id == user_id,
                )
                .first()
            )
        if exists:
            return
        try:
            with self.transaction() as session:
                session.add(AnalyticsCounters(tenant_id=tenant_id, user_id=user_id))
        except IntegrityError:
            # Created by a concurrent first message
            pass

    # Ingestion

    @operation()
    def ingest(
        self, tenant_id: str, user_id: str, connection_id: str, raw_message: InboundMessage
    ) -> IngestResult:
        """
        Record one message exactly once.

        Returns the stored message with ``created=False`` when its external id
        was already recorded in the conversation; counters and preview are
        then left untouched.
        """
        # Raises NotFoundError for a foreign or missing connection
        self.store.get_by_id(tenant_id, connection_id, user_id)

        conversation = self._resolve_conversation(tenant_id, user_id, connection_id, raw_message)

        if raw_message.external_id:
            existing = self._existing_result(
                tenant_id, conversation.id, raw_message.external_id
            )
            if existing is not None:
                self.logger.info(
                    "Duplicate message ignored",
                    extra={"conversation_id": conversation.id, "external_id": raw_message.external_id},
                )
                return existing

        self._ensure_counters(tenant_id, user_id)
        created_at = raw_message.created_at or utc_now()

        try:
            with self.transaction() as session:
                message = Message(
                    conversation_id=conversation.id,
                    tenant_id=tenant_id,
                    content=raw_message.content,
                    direction=raw_message.direction.value,
                    origin=raw_message.origin.value if raw_message.origin else None,
                    external_id=raw_message.external_id,
                    created_at=created_at,
                )
                session.add(message)
                session.flush()

                # Preview is last-write-wins by message time, not arrival order
                preview_values = {"last_message": raw_message.content, "last_message_at": created_at}
                if raw_message.participant_name:
                    preview_values["participant_name"] = raw_message.participant_name
                session.execute(
                    update(Conversation)
                    .where(
                        Conversation.id == conversation.id,
                        Conversation.tenant_id == tenant_id,
                        or_(
                            Conversation.last_message_at.is_(None),
                            Conversation.last_message_at <= created_at,
                        ),
                    )
                    .values(**preview_values, updated_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                session.execute(
                    update(AnalyticsCounters)
                    .where(
                        AnalyticsCounters.tenant_id == tenant_id,
                        AnalyticsCounters.user_id == user_id,
                    )
                    .values(**self._counter_increments(raw_message), updated_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                message_read = MessageRead.model_validate(message)
                updated_conversation = (
                    session.query(Conversation)
                    .filter(Conversation.id == conversation.id)
                    .populate_existing()
                    .one()
                )
                conversation_read = ConversationRead.model_validate(updated_conversation)
        except IntegrityError:
            if not raw_message.external_id:
                raise
            existing = self._existing_result(tenant_id, conversation.id, raw_message.external_id)
            if existing is None:
                raise
            self.logger.info(
                "Concurrent duplicate message resolved to stored row",
                extra={"conversation_id": conversation.id, "external_id": raw_message.external_id},
            )
            return existing

        return IngestResult(message=message_read, conversation=conversation_read, created=True)

    @operation()
    def send_message(
        self,
        tenant_id: str,
        user_id: str,
        connection_id: str,
        target: str,
        content: str,
        origin: MessageOriginEnum = MessageOriginEnum.HUMAN,
    ) -> IngestResult:
        """
        Send through the provider, then record the message under the
        provider's id so a retried send dedups once that id is known.

        Nothing is stored when the provider call fails.
        """
        self.refresh.get_valid_token(tenant_id, connection_id, user_id)
        credentials = self.store.get_credentials(tenant_id, connection_id, user_id)
        client = self.registry.get(credentials.connection.provider_name)

        try:
            receipt = client.send(credentials, target, content)
        except ExternalProviderError:
            raise
        except Exception as e:
            raise ExternalProviderError(
                f"Send through {client.provider_name} failed",
                provider_name=client.provider_name,
                connection_id=connection_id,
                cause=e,
            ) from e

        return self.ingest(
            tenant_id,
            user_id,
            connection_id,
            InboundMessage(
                external_id=receipt.provider_message_id,
                thread_external_id=target,
                content=content,
                direction=MessageDirectionEnum.FROM_AGENT,
                origin=origin,
                created_at=receipt.sent_at,
            ),
        )

    @operation()
    def sync_connection(
        self, tenant_id: str, user_id: str, connection_id: str, cursor: Optional[str] = None
    ) -> SyncResult:
        """Pull one page from the provider and ingest every item."""
        self.refresh.get_valid_token(tenant_id, connection_id, user_id)
        credentials = self.store.get_credentials(tenant_id, connection_id, user_id)
        client = self.registry.get(credentials.connection.provider_name)

        try:
            page = client.fetch(credentials, cursor)
        except ExternalProviderError:
            raise
        except Exception as e:
            raise ExternalProviderError(
                f"Fetch from {client.provider_name} failed",
                provider_name=client.provider_name,
                connection_id=connection_id,
                cause=e,
            ) from e

        result = SyncResult(next_cursor=page.next_cursor)
        for item in page.items:
            if self.ingest(tenant_id, user_id, connection_id, item).created:
                result.ingested += 1
            else:
                result.duplicates += 1

        self.logger.info(
            "Connection synced",
            extra={
                "connection_id": connection_id,
                "ingested": result.ingested,
                "duplicates": result.duplicates,
            },
        )
        return result

    # Read side

    @operation()
    def list_conversations(
        self,
        tenant_id: str,
        user_id: str,
        connection_id: Optional[str] = None,
        status: Optional[ConversationStatusEnum] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ConversationRead]:
        self._check_tenant_scope(tenant_id)
        with self.transaction() as session:
            query = session.query(Conversation).filter(
                Conversation.tenant_id == tenant_id, Conversation.user_id == user_id
            )
            if connection_id:
                query = query.filter(Conversation.platform_connection_id == connection_id)
            if status:
                query = query.filter(Conversation.status == status.value)
            rows = (
                query.order_by(
                    func.coalesce(Conversation.last_message_at, Conversation.created_at).desc()
                )
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [ConversationRead.model_validate(row) for row in rows]

    @operation()
    def list_messages(
        self,
        tenant_id: str,
        user_id: str,
        conversation_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[MessageRead]:
        self._check_tenant_scope(tenant_id)
        with self.transaction() as session:
            owned = (
                session.query(Conversation.id)
                .filter(
                    Conversation.id == conversation_id,
                    Conversation.tenant_id == tenant_id,
                    Conversation.user_id == user_id,
                )
                .first()
            )
            if owned is None:
                raise not_found("Conversation", conversation_id=conversation_id)
            rows = (
                session.query(Message)
                .filter(Message.conversation_id == conversation_id, Message.tenant_id == tenant_id)
                .order_by(Message.created_at.asc(), Message.id.asc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [MessageRead.model_validate(row) for row in rows]

    @operation()
    def set_conversation_status(
        self, tenant_id: str, user_id: str, conversation_id: str, status: ConversationStatusEnum
    ) -> ConversationRead:
        self._check_tenant_scope(tenant_id)
        with self.transaction() as session:
            conversation = (
                session.query(Conversation)
                .filter(
                    Conversation.id == conversation_id,
                    Conversation.tenant_id == tenant_id,
                    Conversation.user_id == user_id,
                )
                .first()
            )
            if conversation is None:
                raise not_found("Conversation", conversation_id=conversation_id)
            conversation.status = status.value
            session.flush()
            return ConversationRead.model_validate(conversation)

    @operation()
    def get_analytics(self, tenant_id: str, user_id: str) -> AnalyticsRead:
        self._check_tenant_scope(tenant_id)
        with self.transaction() as session:
            counters = (
                session.query(AnalyticsCounters)
                .filter(
                    AnalyticsCounters.tenant_id == tenant_id,
                    AnalyticsCounters.user_id == user_id,
                )
                .first()
            )
            if counters is None:
                return AnalyticsRead(tenant_id=tenant_id, user_id=user_id)
            return AnalyticsRead.model_validate(counters)
