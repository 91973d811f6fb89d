"""Tests for ProviderRegistry."""

import pytest

from tests.fixtures.fake_provider import FakeProviderClient
from unified_inbox_core.config import AppConfig, ProvidersConfig, default_provider_catalogue
from unified_inbox_core.exceptions import NotFoundError
from unified_inbox_core.providers import OAuth2ProviderClient, ProviderRegistry


class TestProviderRegistry:
    def test_get_registered_client(self):
        slack = FakeProviderClient("slack")
        registry = ProviderRegistry([slack])

        assert registry.get("slack") is slack
        assert "slack" in registry
        assert "teams" not in registry

    def test_unknown_provider_is_not_found(self):
        with pytest.raises(NotFoundError) as exc_info:
            ProviderRegistry().get("myspace")

        assert "provider_name=myspace" in exc_info.value.message

    def test_clients_are_ordered_by_name(self):
        registry = ProviderRegistry([FakeProviderClient("slack"), FakeProviderClient("email")])

        assert registry.names() == ["email", "slack"]
        assert [c.provider_name for c in registry.clients()] == ["email", "slack"]

    def test_from_config_builds_oauth2_clients(self):
        config = AppConfig(
            providers=ProvidersConfig(request_timeout_seconds=3, providers=default_provider_catalogue())
        )

        registry = ProviderRegistry.from_config(config)

        assert set(registry.names()) == {"slack", "facebook", "instagram", "salesforce", "hubspot", "email"}
        slack = registry.get("slack")
        assert isinstance(slack, OAuth2ProviderClient)
        assert slack.timeout_seconds == 3
        assert slack.label == "Slack"
        registry.close()

    def test_close_closes_every_client(self):
        clients = [FakeProviderClient("slack"), FakeProviderClient("email")]

        ProviderRegistry(clients).close()

        assert all(client.closed for client in clients)
