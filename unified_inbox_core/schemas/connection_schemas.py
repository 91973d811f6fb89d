"""
Pydantic schemas for platform connections and the authorization flow.

Read schemas never carry access or refresh tokens; the only models that do
are ``TokenGrant`` (provider response) and ``ConnectionCredentials``
(store output for the refresh guard), both with secrets hidden from repr.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..db.db_base import ensure_aware
from ..enums import CredentialStateEnum


class PlatformConnectionRead(BaseModel):
    """Connection as exposed to callers: no secrets."""

    id: str
    tenant_id: str
    user_id: str
    provider_name: str
    display_name: Optional[str] = None
    credential_state: CredentialStateEnum
    token_expiry: Optional[datetime] = None
    connected_at: Optional[datetime] = None
    provider_metadata: Dict[str, Any] = Field(default_factory=dict)
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("token_expiry", "connected_at", "created_at", "updated_at")
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)

    @field_validator("provider_metadata", mode="before")
    def default_metadata(cls, v: Any) -> Any:
        return v or {}

    @property
    def is_connected(self) -> bool:
        return self.credential_state == CredentialStateEnum.CONNECTED


class ConnectionCredentials(BaseModel):
    """Decrypted secrets of a connection, for the refresh guard and senders."""

    connection: PlatformConnectionRead
    access_token: Optional[str] = Field(default=None, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)


class ConnectionChanges(BaseModel):
    """
    Partial update applied by the credential store.

    Only fields explicitly set are written. A resulting state other than
    CONNECTED always clears the secrets regardless of what is set here.
    """

    credential_state: Optional[CredentialStateEnum] = None
    access_token: Optional[str] = Field(default=None, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    token_expiry: Optional[datetime] = None
    display_name: Optional[str] = None
    provider_metadata: Optional[Dict[str, Any]] = None


class TokenGrant(BaseModel):
    """Result of a code exchange or refresh."""

    access_token: str = Field(min_length=1, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_in: Optional[int] = Field(default=None, ge=0)
    provider_metadata: Dict[str, Any] = Field(default_factory=dict)


class AuthorizationRedirect(BaseModel):
    """Where to send the user to approve access, plus the issued handshake."""

    url: str
    state: str
    connection_id: str
    expires_at: datetime


class ProviderStatus(BaseModel):
    """Per-provider view for the connections settings page."""

    provider_name: str
    label: str
    configured: bool
    connected: bool
    connection_id: Optional[str] = None
    display_name: Optional[str] = None
    credential_state: Optional[CredentialStateEnum] = None
