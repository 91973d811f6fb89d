"""Provider name to client mapping."""

from typing import Dict, Iterable, List, Optional

import httpx

from ..config import AppConfig, get_config
from ..exceptions import not_found
from .base import ProviderClient
from .oauth2_client import OAuth2ProviderClient


class ProviderRegistry:
    """Holds one client per provider name."""

    def __init__(self, clients: Optional[Iterable[ProviderClient]] = None):
        self._clients: Dict[str, ProviderClient] = {}
        for client in clients or []:
            self.register(client)

    @classmethod
    def from_config(
        cls, config: Optional[AppConfig] = None, http_client: Optional[httpx.Client] = None
    ) -> "ProviderRegistry":
        """Build an OAuth2 client for every provider in the configuration."""
        config = config or get_config()
        timeout = config.providers.request_timeout_seconds
        return cls(
            OAuth2ProviderClient(settings, timeout_seconds=timeout, http_client=http_client)
            for settings in config.providers.providers.values()
        )

    def register(self, client: ProviderClient) -> None:
        self._clients[client.provider_name] = client

    def get(self, provider_name: str) -> ProviderClient:
        client = self._clients.get(provider_name)
        if client is None:
            raise not_found("Provider", provider_name=provider_name)
        return client

    def __contains__(self, provider_name: str) -> bool:
        return provider_name in self._clients

    def names(self) -> List[str]:
        return sorted(self._clients)

    def clients(self) -> List[ProviderClient]:
        return [self._clients[name] for name in self.names()]

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
