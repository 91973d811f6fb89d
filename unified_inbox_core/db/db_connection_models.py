"""
Platform connection and authorization handshake models.

Just the data structure; transitions live in the credential store.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)

from ..enums import CredentialStateEnum
from .db_base import JSON, EncryptedBinary, TimestampMixin, UUIDMixin, utc_now
from .db_config import Base

_CONNECTED_ONLY = text(f"credential_state = '{CredentialStateEnum.CONNECTED.value}'")


class PlatformConnection(Base, UUIDMixin, TimestampMixin):
    """One tenant user's link to one external provider account."""

    __tablename__ = "platform_connections"

    tenant_id = Column(String(100), nullable=False, index=True)
    user_id = Column(String(100), nullable=False)
    provider_name = Column(String(50), nullable=False)
    display_name = Column(String(255), nullable=True)

    credential_state = Column(
        String(32), nullable=False, default=CredentialStateEnum.DISCONNECTED.value
    )

    # Encrypted storage; populated only while CONNECTED
    access_token = Column(EncryptedBinary, nullable=True)
    refresh_token = Column(EncryptedBinary, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)

    # Set each time the row becomes CONNECTED and never cleared; marks history rows
    connected_at = Column(DateTime(timezone=True), nullable=True)

    provider_metadata = Column(JSON, nullable=True)

    # Optimistic concurrency token, bumped on every write
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_platform_connection_lookup", "tenant_id", "user_id", "provider_name"),
        Index(
            "uq_platform_connection_connected",
            "tenant_id",
            "user_id",
            "provider_name",
            unique=True,
            sqlite_where=_CONNECTED_ONLY,
            postgresql_where=_CONNECTED_ONLY,
        ),
        CheckConstraint(
            f"(credential_state = '{CredentialStateEnum.CONNECTED.value}') "
            "= (access_token IS NOT NULL)",
            name="ck_platform_connection_token_state",
        ),
    )


class AuthorizationHandshake(Base):
    """Single-use CSRF state issued when a connect flow starts."""

    __tablename__ = "authorization_handshakes"

    state = Column(String(128), primary_key=True)
    tenant_id = Column(String(100), nullable=False)
    user_id = Column(String(100), nullable=False)
    provider_name = Column(String(50), nullable=False)
    connection_id = Column(
        String(36), ForeignKey("platform_connections.id", ondelete="CASCADE"), nullable=False
    )
    redirect_uri = Column(Text, nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
