from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, UniqueConstraint

from ..enums import ConversationStatusEnum
from .db_base import TimestampMixin, UUIDMixin, utc_now
from .db_config import Base


class Conversation(Base, UUIDMixin, TimestampMixin):
    """A thread with one external participant on one connection."""

    __tablename__ = "conversations"

    tenant_id = Column(String(100), nullable=False)
    user_id = Column(String(100), nullable=False)
    platform_connection_id = Column(
        String(36), ForeignKey("platform_connections.id"), nullable=False
    )
    external_id = Column(String(255), nullable=False)
    participant_name = Column(String(255), nullable=True)

    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(16), nullable=False, default=ConversationStatusEnum.ACTIVE.value)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "platform_connection_id",
            "external_id",
            name="uq_conversation_thread",
        ),
        Index("ix_conversation_inbox", "tenant_id", "user_id", "last_message_at"),
    )


class Message(Base, UUIDMixin):
    """Immutable message record; external_id is the provider's id for dedup."""

    __tablename__ = "messages"

    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False)
    tenant_id = Column(String(100), nullable=False, index=True)
    content = Column(Text, nullable=False)
    direction = Column(String(16), nullable=False)
    origin = Column(String(16), nullable=True)
    external_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    # NULL external ids never collide, so only provider-keyed messages dedup
    __table_args__ = (
        UniqueConstraint("conversation_id", "external_id", name="uq_message_external"),
        Index("ix_message_timeline", "conversation_id", "created_at"),
    )
