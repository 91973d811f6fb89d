"""
Tests for IngestionService: dedup, conversation preview, analytics counters,
outbound send and provider sync.
"""

from datetime import timedelta

import pytest

from tests.fixtures.factories import ConversationFactory, PlatformConnectionFactory
from unified_inbox_core.db import Conversation, Message, utc_now
from unified_inbox_core.enums import (
    ConversationStatusEnum,
    MessageDirectionEnum,
    MessageOriginEnum,
)
from unified_inbox_core.exceptions import (
    AuthenticationError,
    ExternalProviderError,
    NotFoundError,
)
from unified_inbox_core.schemas import FetchPage, InboundMessage


def inbound(external_id="m-1", thread="C123", content="Hello", **kwargs):
    return InboundMessage(
        external_id=external_id, thread_external_id=thread, content=content, **kwargs
    )


@pytest.fixture
def connection(db_session):
    return PlatformConnectionFactory()


class TestIngest:
    def test_first_message_creates_conversation_and_counts(
        self, ingestion_service, connection, tenant_id, user_id
    ):
        result = ingestion_service.ingest(
            tenant_id, user_id, connection.id, inbound(participant_name="Jane Customer")
        )

        assert result.created
        assert result.message.external_id == "m-1"
        assert result.message.direction == MessageDirectionEnum.FROM_CUSTOMER
        assert result.conversation.external_id == "C123"
        assert result.conversation.participant_name == "Jane Customer"
        assert result.conversation.last_message == "Hello"

        analytics = ingestion_service.get_analytics(tenant_id, user_id)
        assert analytics.total_messages == 1
        assert analytics.generated_responses == 0
        assert analytics.manual_responses == 0

    def test_duplicate_external_id_has_no_side_effects(
        self, ingestion_service, connection, db_session, tenant_id, user_id
    ):
        first = ingestion_service.ingest(tenant_id, user_id, connection.id, inbound())
        second = ingestion_service.ingest(
            tenant_id, user_id, connection.id, inbound(content="Hello (redelivered)")
        )

        assert not second.created
        assert second.message.id == first.message.id
        assert second.message.content == "Hello"
        assert db_session.query(Message).count() == 1
        assert ingestion_service.get_analytics(tenant_id, user_id).total_messages == 1

    def test_same_external_id_in_other_thread_is_distinct(
        self, ingestion_service, connection, db_session, tenant_id, user_id
    ):
        ingestion_service.ingest(tenant_id, user_id, connection.id, inbound(thread="C1"))
        result = ingestion_service.ingest(tenant_id, user_id, connection.id, inbound(thread="C2"))

        assert result.created
        assert db_session.query(Conversation).count() == 2

    def test_messages_without_external_id_are_never_deduplicated(
        self, ingestion_service, connection, db_session, tenant_id, user_id
    ):
        ingestion_service.ingest(tenant_id, user_id, connection.id, inbound(external_id=None))
        ingestion_service.ingest(tenant_id, user_id, connection.id, inbound(external_id="  "))

        assert db_session.query(Message).count() == 2

    def test_agent_messages_count_by_origin(self, ingestion_service, connection, tenant_id, user_id):
        agent = MessageDirectionEnum.FROM_AGENT
        ingestion_service.ingest(tenant_id, user_id, connection.id, inbound("a-1", direction=agent))
        ingestion_service.ingest(
            tenant_id,
            user_id,
            connection.id,
            inbound("a-2", direction=agent, origin=MessageOriginEnum.GENERATED),
        )
        ingestion_service.ingest(tenant_id, user_id, connection.id, inbound("c-1"))

        analytics = ingestion_service.get_analytics(tenant_id, user_id)
        assert analytics.total_messages == 3
        assert analytics.generated_responses == 1
        assert analytics.manual_responses == 1

    def test_preview_is_last_write_wins_by_message_time(
        self, ingestion_service, connection, tenant_id, user_id
    ):
        now = utc_now()
        ingestion_service.ingest(
            tenant_id, user_id, connection.id, inbound("m-new", content="newest", created_at=now)
        )
        late = ingestion_service.ingest(
            tenant_id,
            user_id,
            connection.id,
            inbound("m-old", content="older", created_at=now - timedelta(minutes=5)),
        )

        assert late.created
        assert late.conversation.last_message == "newest"
        assert late.conversation.last_message_at == now

    def test_ingest_on_foreign_connection_is_not_found(
        self, ingestion_service, connection, db_session, other_tenant_id, user_id
    ):
        with pytest.raises(NotFoundError):
            ingestion_service.ingest(other_tenant_id, user_id, connection.id, inbound())

        assert db_session.query(Message).count() == 0


class TestSendMessage:
    def test_send_records_agent_message_under_provider_id(
        self, ingestion_service, fake_provider, db_session, tenant_id, user_id
    ):
        connection = PlatformConnectionFactory(access_token="xoxb-send")

        result = ingestion_service.send_message(
            tenant_id, user_id, connection.id, target="C123", content="On it!"
        )

        assert fake_provider.sent == [("xoxb-send", "C123", "On it!")]
        assert result.created
        assert result.message.external_id == "slack-msg-1"
        assert result.message.direction == MessageDirectionEnum.FROM_AGENT
        assert result.message.origin == MessageOriginEnum.HUMAN
        assert ingestion_service.get_analytics(tenant_id, user_id).manual_responses == 1

    def test_send_refreshes_expiring_token_first(
        self, ingestion_service, fake_provider, db_session, tenant_id, user_id
    ):
        connection = PlatformConnectionFactory(expiring=True)

        ingestion_service.send_message(tenant_id, user_id, connection.id, target="C123", content="Hi")

        assert len(fake_provider.refresh_calls) == 1
        assert fake_provider.sent[0][0] == "refreshed-access-1"

    def test_send_failure_creates_no_message(
        self, ingestion_service, fake_provider, db_session, connection, tenant_id, user_id
    ):
        fake_provider.send_error = ExternalProviderError("Provider slack returned HTTP 503", provider_name="slack")

        with pytest.raises(ExternalProviderError) as exc_info:
            ingestion_service.send_message(tenant_id, user_id, connection.id, target="C123", content="Hi")

        assert exc_info.value.status_code == 502
        assert db_session.query(Message).count() == 0
        assert ingestion_service.get_analytics(tenant_id, user_id).total_messages == 0

    def test_send_on_disconnected_connection_requires_authentication(
        self, ingestion_service, fake_provider, db_session, tenant_id, user_id
    ):
        connection = PlatformConnectionFactory(disconnected=True)

        with pytest.raises(AuthenticationError):
            ingestion_service.send_message(tenant_id, user_id, connection.id, target="C123", content="Hi")

        assert fake_provider.sent == []


class TestSyncConnection:
    def test_sync_ingests_page_and_counts_duplicates(
        self, ingestion_service, fake_provider, connection, tenant_id, user_id
    ):
        ingestion_service.ingest(tenant_id, user_id, connection.id, inbound("m-1"))
        fake_provider.pages[None] = FetchPage(
            items=[inbound("m-1"), inbound("m-2"), inbound("m-3", thread="C999")],
            next_cursor="page-2",
        )

        result = ingestion_service.sync_connection(tenant_id, user_id, connection.id)

        assert result.ingested == 2
        assert result.duplicates == 1
        assert result.next_cursor == "page-2"

    def test_sync_uses_cursor(self, ingestion_service, fake_provider, connection, tenant_id, user_id):
        fake_provider.pages["page-2"] = FetchPage(items=[inbound("m-9")])

        result = ingestion_service.sync_connection(tenant_id, user_id, connection.id, cursor="page-2")

        assert result.ingested == 1
        assert result.next_cursor is None

    def test_sync_fetch_failure_is_a_provider_error(
        self, ingestion_service, fake_provider, db_session, connection, tenant_id, user_id
    ):
        fake_provider.fetch_error = ConnectionResetError("connection reset by peer")

        with pytest.raises(ExternalProviderError) as exc_info:
            ingestion_service.sync_connection(tenant_id, user_id, connection.id)

        assert exc_info.value.status_code == 502
        assert isinstance(exc_info.value.cause, ConnectionResetError)
        assert db_session.query(Message).count() == 0


class TestReadSide:
    def test_list_conversations_newest_activity_first(
        self, ingestion_service, connection, tenant_id, user_id
    ):
        now = utc_now()
        ingestion_service.ingest(
            tenant_id, user_id, connection.id, inbound("m-1", thread="old", created_at=now - timedelta(hours=1))
        )
        ingestion_service.ingest(tenant_id, user_id, connection.id, inbound("m-2", thread="new", created_at=now))

        conversations = ingestion_service.list_conversations(tenant_id, user_id)

        assert [c.external_id for c in conversations] == ["new", "old"]

    def test_list_conversations_is_scoped_to_user(
        self, ingestion_service, db_session, connection, tenant_id, user_id
    ):
        ConversationFactory(connection=connection)
        other_connection = PlatformConnectionFactory(user_id="user-2")
        ConversationFactory(connection=other_connection)

        conversations = ingestion_service.list_conversations(tenant_id, user_id)

        assert len(conversations) == 1
        assert conversations[0].user_id == user_id

    def test_list_messages_in_time_order(self, ingestion_service, connection, tenant_id, user_id):
        now = utc_now()
        result = ingestion_service.ingest(
            tenant_id, user_id, connection.id, inbound("m-2", content="second", created_at=now)
        )
        ingestion_service.ingest(
            tenant_id,
            user_id,
            connection.id,
            inbound("m-1", content="first", created_at=now - timedelta(seconds=30)),
        )

        messages = ingestion_service.list_messages(tenant_id, user_id, result.conversation.id)

        assert [m.content for m in messages] == ["first", "second"]

    def test_list_messages_of_foreign_conversation_is_not_found(
        self, ingestion_service, db_session, other_tenant_id, user_id
    ):
        conversation = ConversationFactory()

        with pytest.raises(NotFoundError):
            ingestion_service.list_messages(other_tenant_id, user_id, conversation.id)

    def test_archive_conversation(self, ingestion_service, db_session, tenant_id, user_id):
        conversation = ConversationFactory()

        archived = ingestion_service.set_conversation_status(
            tenant_id, user_id, conversation.id, ConversationStatusEnum.ARCHIVED
        )

        assert archived.status == ConversationStatusEnum.ARCHIVED
        assert ingestion_service.list_conversations(
            tenant_id, user_id, status=ConversationStatusEnum.ACTIVE
        ) == []

    def test_analytics_default_to_zero(self, ingestion_service, tenant_id, user_id):
        analytics = ingestion_service.get_analytics(tenant_id, user_id)

        assert (analytics.total_messages, analytics.generated_responses, analytics.manual_responses) == (0, 0, 0)
