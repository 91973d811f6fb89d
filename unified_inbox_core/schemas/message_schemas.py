"""
Pydantic schemas for conversations, messages and ingestion results.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..db.db_base import ensure_aware
from ..enums import ConversationStatusEnum, MessageDirectionEnum, MessageOriginEnum


class InboundMessage(BaseModel):
    """
    Minimal provider-neutral message shape needed for dedup and display.
    """

    external_id: Optional[str] = Field(default=None, max_length=255)
    thread_external_id: str = Field(min_length=1, max_length=255)
    content: str
    direction: MessageDirectionEnum = MessageDirectionEnum.FROM_CUSTOMER
    origin: Optional[MessageOriginEnum] = None
    participant_name: Optional[str] = Field(default=None, max_length=255)
    created_at: Optional[datetime] = None

    @field_validator("external_id")
    def blank_external_id_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("created_at")
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Stored and compared as UTC
        v = ensure_aware(v)
        return v.astimezone(timezone.utc) if v is not None else None

    @model_validator(mode="after")
    def agent_messages_have_origin(self) -> "InboundMessage":
        if self.direction == MessageDirectionEnum.FROM_AGENT and self.origin is None:
            self.origin = MessageOriginEnum.HUMAN
        if self.direction == MessageDirectionEnum.FROM_CUSTOMER:
            self.origin = None
        return self


class ConversationRead(BaseModel):
    id: str
    tenant_id: str
    user_id: str
    platform_connection_id: str
    external_id: str
    participant_name: Optional[str] = None
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    status: ConversationStatusEnum

    model_config = ConfigDict(from_attributes=True)

    @field_validator("last_message_at")
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)


class MessageRead(BaseModel):
    id: str
    conversation_id: str
    content: str
    direction: MessageDirectionEnum
    origin: Optional[MessageOriginEnum] = None
    external_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at")
    def normalize_timezone(cls, v: datetime) -> datetime:
        return ensure_aware(v)


class IngestResult(BaseModel):
    """``created`` is False when the external id had already been stored."""

    message: MessageRead
    conversation: ConversationRead
    created: bool


class SyncResult(BaseModel):
    ingested: int = 0
    duplicates: int = 0
    next_cursor: Optional[str] = None


class SendReceipt(BaseModel):
    provider_message_id: str = Field(min_length=1)
    sent_at: Optional[datetime] = None


class FetchPage(BaseModel):
    items: List[InboundMessage] = Field(default_factory=list)
    next_cursor: Optional[str] = None


class AnalyticsRead(BaseModel):
    tenant_id: str
    user_id: str
    total_messages: int = 0
    generated_responses: int = 0
    manual_responses: int = 0

    model_config = ConfigDict(from_attributes=True)
