"""
Enums used across the unified_inbox_core package.

This module contains enum definitions that are used by multiple modules
to avoid circular import issues.
"""

import enum


class CredentialStateEnum(str, enum.Enum):
    """Lifecycle state of a platform connection."""

    DISCONNECTED = "DISCONNECTED"
    PENDING_AUTHORIZATION = "PENDING_AUTHORIZATION"
    CONNECTED = "CONNECTED"
    EXPIRED = "EXPIRED"


class MessageDirectionEnum(str, enum.Enum):
    """Who authored a message relative to the tenant."""

    FROM_CUSTOMER = "FROM_CUSTOMER"
    FROM_AGENT = "FROM_AGENT"


class MessageOriginEnum(str, enum.Enum):
    """How an agent-side message was produced."""

    HUMAN = "HUMAN"
    GENERATED = "GENERATED"


class ConversationStatusEnum(str, enum.Enum):
    """Conversation visibility in the inbox."""

    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
