from .connection_schemas import (
    AuthorizationRedirect,
    ConnectionChanges,
    ConnectionCredentials,
    PlatformConnectionRead,
    ProviderStatus,
    TokenGrant,
)
from .message_schemas import (
    AnalyticsRead,
    ConversationRead,
    FetchPage,
    InboundMessage,
    IngestResult,
    MessageRead,
    SendReceipt,
    SyncResult,
)

__all__ = [
    "AnalyticsRead",
    "AuthorizationRedirect",
    "ConnectionChanges",
    "ConnectionCredentials",
    "ConversationRead",
    "FetchPage",
    "InboundMessage",
    "IngestResult",
    "MessageRead",
    "PlatformConnectionRead",
    "ProviderStatus",
    "SendReceipt",
    "SyncResult",
    "TokenGrant",
]
