"""Abstract base class for provider clients.

Each external provider (Slack, Facebook, Salesforce, ...) is reached through
this interface. Provider-specific wire formats stay behind it; the services
only see ``TokenGrant``, ``SendReceipt`` and ``FetchPage``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..schemas.connection_schemas import ConnectionCredentials, TokenGrant
from ..schemas.message_schemas import FetchPage, SendReceipt


class ProviderClient(ABC):
    """Abstract base class for external provider clients.

    Implementations must raise ``ExternalProviderError`` for transport
    failures and non-success responses, and ``ProviderGrantRejectedError``
    when a refresh token is refused.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier, e.g. 'slack'."""
        ...

    @property
    def label(self) -> str:
        return self.provider_name.title()

    @abstractmethod
    def is_configured(self) -> bool:
        """True when client credentials are present."""
        ...

    @abstractmethod
    def build_authorization_url(
        self, state: str, redirect_uri: str, scopes: Optional[List[str]] = None
    ) -> str:
        """Return the consent URL; it must carry ``state`` unchanged."""
        ...

    @abstractmethod
    def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        ...

    @abstractmethod
    def refresh_token(self, refresh_token: str) -> TokenGrant:
        ...

    @abstractmethod
    def send(self, connection: ConnectionCredentials, target: str, content: str) -> SendReceipt:
        ...

    @abstractmethod
    def fetch(self, connection: ConnectionCredentials, cursor: Optional[str] = None) -> FetchPage:
        ...

    def account_name(self, provider_metadata: Dict[str, Any]) -> Optional[str]:
        """Account or workspace name found in the provider metadata, if any."""
        return None

    def display_name(self, provider_metadata: Optional[Dict[str, Any]]) -> str:
        """Human label for a connection, e.g. 'Slack (Acme)'."""
        account = self.account_name(provider_metadata or {})
        if account:
            return f"{self.label} ({account})"
        return self.label

    def close(self) -> None:
        """Release transport resources."""
        return None
