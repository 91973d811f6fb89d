"""
SQLAlchemy models and database management.

This module provides a common entry point for all models.
"""

from .db_analytics_models import AnalyticsCounters
from .db_base import (
    JSON,
    EncryptedBinary,
    TimestampMixin,
    UUIDMixin,
    ensure_aware,
    utc_now,
)
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_app_database_config,
    import_all_models,
    initialize_db,
    set_db_manager,
)
from .db_connection_models import AuthorizationHandshake, PlatformConnection
from .db_conversation_models import Conversation, Message

__all__ = [
    # Base definitions
    "Base",
    "JSON",
    "EncryptedBinary",
    "TimestampMixin",
    "UUIDMixin",
    "ensure_aware",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "close_db",
    "get_db_manager",
    "get_app_database_config",
    "import_all_models",
    "initialize_db",
    "set_db_manager",
    # Models
    "AnalyticsCounters",
    "AuthorizationHandshake",
    "Conversation",
    "Message",
    "PlatformConnection",
]
