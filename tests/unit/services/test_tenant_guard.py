"""
Tests for TenantGuard: scope enforcement and isolation parity.
"""

import pytest

from tests.fixtures.factories import ConversationFactory, PlatformConnectionFactory
from unified_inbox_core.constants import CallbackReason
from unified_inbox_core.context import TenantContext
from unified_inbox_core.db import AuthorizationHandshake
from unified_inbox_core.enums import CredentialStateEnum
from unified_inbox_core.exceptions import (
    ErrorCode,
    HandshakeError,
    NotFoundError,
    ValidationError,
)
from unified_inbox_core.schemas import InboundMessage


def error_signature(error):
    return error.message, error.error_code, error.status_code


class TestTenantScope:
    def test_calls_run_inside_tenant_context_and_restore_it(self, guard, db_session, tenant_id, user_id):
        seen = {}
        original = guard.store.list_connections

        def spy(*args, **kwargs):
            seen["tenant"] = TenantContext.get_current_tenant_id()
            seen["user"] = TenantContext.get_current_user_id()
            return original(*args, **kwargs)

        guard.store.list_connections = spy
        guard.list_connections(tenant_id, user_id)

        assert seen == {"tenant": tenant_id, "user": user_id}
        assert TenantContext.get_current_tenant_id() is None

    def test_blank_tenant_is_rejected(self, guard, user_id):
        with pytest.raises(ValidationError) as exc_info:
            guard.list_connections("  ", user_id)

        assert exc_info.value.error_code == ErrorCode.MISSING_REQUIRED

    def test_query_for_other_tenant_inside_scope_looks_like_missing(self, guard, db_session, tenant_id, user_id):
        connection = PlatformConnectionFactory()

        # A lower layer asked for a different tenant than the caller's scope
        with pytest.raises(NotFoundError) as breach:
            with guard._scope(
                "tenant-b", user_id, "get_connection", "PlatformConnection", connection_id=connection.id
            ):
                guard.store.get_by_id(tenant_id, connection.id)

        with pytest.raises(NotFoundError) as foreign:
            guard.get_connection("tenant-b", user_id, connection.id)

        assert error_signature(breach.value) == error_signature(foreign.value)


class TestIsolationParity:
    """A foreign id must be indistinguishable from a nonexistent one."""

    @pytest.fixture
    def foreign_connection(self, db_session):
        return PlatformConnectionFactory(tenant_id="tenant-b")

    def test_revoke_parity(self, guard, db_session, foreign_connection, tenant_id, user_id):
        with pytest.raises(NotFoundError) as foreign:
            guard.revoke_connection(tenant_id, user_id, foreign_connection.id)

        db_session.delete(foreign_connection)
        db_session.commit()

        with pytest.raises(NotFoundError) as missing:
            guard.revoke_connection(tenant_id, user_id, foreign_connection.id)

        assert error_signature(foreign.value) == error_signature(missing.value)

    def test_send_parity(self, guard, db_session, foreign_connection, fake_provider, tenant_id, user_id):
        with pytest.raises(NotFoundError) as foreign:
            guard.send_message(tenant_id, user_id, foreign_connection.id, target="C1", content="hi")

        db_session.delete(foreign_connection)
        db_session.commit()

        with pytest.raises(NotFoundError) as missing:
            guard.send_message(tenant_id, user_id, foreign_connection.id, target="C1", content="hi")

        assert error_signature(foreign.value) == error_signature(missing.value)
        assert fake_provider.sent == []

    def test_token_parity(self, guard, db_session, foreign_connection, tenant_id, user_id):
        with pytest.raises(NotFoundError) as foreign:
            guard.get_valid_token(tenant_id, user_id, foreign_connection.id)

        db_session.delete(foreign_connection)
        db_session.commit()

        with pytest.raises(NotFoundError) as missing:
            guard.get_valid_token(tenant_id, user_id, foreign_connection.id)

        assert error_signature(foreign.value) == error_signature(missing.value)

    def test_messages_parity(self, guard, db_session, tenant_id, user_id):
        conversation = ConversationFactory(connection__tenant_id="tenant-b")

        with pytest.raises(NotFoundError) as foreign:
            guard.list_messages(tenant_id, user_id, conversation.id)

        with pytest.raises(NotFoundError) as missing:
            guard.list_messages(tenant_id, user_id, "00000000-0000-0000-0000-000000000000")

        assert foreign.value.error_code == missing.value.error_code
        assert foreign.value.message.replace(conversation.id, "<id>") == missing.value.message.replace(
            "00000000-0000-0000-0000-000000000000", "<id>"
        )

    def test_other_users_connection_is_not_visible(self, guard, db_session, tenant_id):
        connection = PlatformConnectionFactory(user_id="user-2")

        with pytest.raises(NotFoundError):
            guard.get_connection(tenant_id, "user-1", connection.id)


class TestGuardOperations:
    def test_provider_status_reports_configured_and_connected(self, guard, db_session, tenant_id, user_id):
        connection = PlatformConnectionFactory()

        statuses = {s.provider_name: s for s in guard.get_provider_status(tenant_id, user_id)}

        assert statuses["slack"].configured
        assert statuses["slack"].connected
        assert statuses["slack"].connection_id == connection.id
        assert statuses["slack"].display_name == "Slack (Acme)"
        assert not statuses["hubspot"].configured
        assert not statuses["hubspot"].connected
        assert statuses["hubspot"].credential_state is None

    def test_list_connections_never_exposes_tokens(self, guard, db_session, tenant_id, user_id):
        PlatformConnectionFactory(access_token="xoxb-secret", refresh_token="xoxe-secret")

        connections = guard.list_connections(tenant_id, user_id)

        dumped = str([c.model_dump() for c in connections])
        assert "xoxb-secret" not in dumped
        assert "xoxe-secret" not in dumped

    def test_full_connect_flow_through_guard(self, guard, db_session, tenant_id, user_id):
        redirect = guard.initiate_authorization(
            tenant_id, user_id, "slack", "https://app.example.com/connections/slack/callback"
        )

        connection = guard.complete_authorization(
            tenant_id, user_id, "slack", code="code-1", state=redirect.state
        )

        assert connection.credential_state == CredentialStateEnum.CONNECTED
        assert guard.get_valid_token(tenant_id, user_id, connection.id) == "access-code-1"

    def test_state_replayed_by_another_tenant_is_burnt(
        self, guard, db_session, tenant_id, other_tenant_id, user_id
    ):
        redirect = guard.initiate_authorization(
            tenant_id, user_id, "slack", "https://app.example.com/connections/slack/callback"
        )

        with pytest.raises(HandshakeError) as exc_info:
            guard.complete_authorization(
                other_tenant_id, user_id, "slack", code="code-1", state=redirect.state
            )

        assert exc_info.value.reason == CallbackReason.MISMATCH.value
        db_session.expire_all()
        assert db_session.get(AuthorizationHandshake, redirect.state) is None
        assert (
            guard.get_connection(tenant_id, user_id, redirect.connection_id).credential_state
            == CredentialStateEnum.DISCONNECTED
        )

    def test_ingest_and_archive_through_guard(self, guard, db_session, tenant_id, user_id):
        connection = PlatformConnectionFactory()
        result = guard.ingest(
            tenant_id,
            user_id,
            connection.id,
            InboundMessage(external_id="m-1", thread_external_id="C1", content="Hi"),
        )

        archived = guard.archive_conversation(tenant_id, user_id, result.conversation.id)

        assert archived.status.value == "ARCHIVED"
        assert guard.get_analytics(tenant_id, user_id).total_messages == 1

    def test_close_releases_provider_clients(self, guard, fake_provider):
        guard.close()

        assert fake_provider.closed
