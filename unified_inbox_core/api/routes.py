"""Connection, messaging and analytics endpoints.

The caller's tenant and user come from the identity headers; every call goes
through ``TenantGuard``. Authorization callbacks never answer with an error
page: they redirect to the configured UI URL with a ``reason`` code.
"""

from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from ..constants import CallbackReason
from ..enums import ConversationStatusEnum, MessageOriginEnum
from ..exceptions import (
    ConflictError,
    ExternalProviderError,
    HandshakeError,
    NotFoundError,
    ValidationError,
)
from ..schemas.connection_schemas import PlatformConnectionRead, ProviderStatus
from ..schemas.message_schemas import (
    AnalyticsRead,
    ConversationRead,
    InboundMessage,
    MessageRead,
    SyncResult,
)
from ..services.tenant_guard import TenantGuard
from ..utils.logger import get_logger
from .dependencies import CallerScope, get_caller, get_guard

logger = get_logger()

router = APIRouter(tags=["Unified Inbox"])


class SendMessageRequest(BaseModel):
    target: str = Field(min_length=1)
    content: str = Field(min_length=1)
    origin: MessageOriginEnum = MessageOriginEnum.HUMAN


class MessageAccepted(BaseModel):
    message_id: str
    conversation_id: str
    created: bool


class SyncRequest(BaseModel):
    cursor: Optional[str] = None


def _ui_redirect(base_url: str, **params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    separator = "&" if "?" in base_url else "?"
    return RedirectResponse(url=f"{base_url}{separator}{query}", status_code=status.HTTP_302_FOUND)


# Connections

@router.get("/connections", response_model=List[PlatformConnectionRead])
def list_connections(
    include_history: bool = Query(False),
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    return guard.list_connections(caller.tenant_id, caller.user_id, include_history=include_history)


@router.get("/connections/status", response_model=List[ProviderStatus])
def provider_status(
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    """Configured/connected flags per provider for the settings page."""
    return guard.get_provider_status(caller.tenant_id, caller.user_id)


@router.post("/connections/{provider}/initiate")
def initiate_authorization(
    provider: str,
    request: Request,
    redirect_uri: Optional[str] = Query(None),
    scopes: Optional[List[str]] = Query(None),
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    """Redirect the user to the provider consent screen."""
    callback_uri = redirect_uri or str(request.url_for("authorization_callback", provider=provider))
    redirect = guard.initiate_authorization(
        caller.tenant_id,
        caller.user_id,
        provider_name=provider,
        redirect_uri=callback_uri,
        scopes=scopes,
    )
    return RedirectResponse(url=redirect.url, status_code=status.HTTP_302_FOUND)


@router.get("/connections/{provider}/callback", name="authorization_callback")
def authorization_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    """
    Complete the connect flow and send the user back to the UI.

    A provider-side denial (``error`` present) still consumes the handshake
    so the pending connection is released.
    """
    settings = guard.config.authorization
    try:
        connection = guard.complete_authorization(
            caller.tenant_id,
            caller.user_id,
            provider_name=provider,
            code=None if error else code,
            state=state,
        )
    except HandshakeError as e:
        reason = e.reason
    except ValidationError:
        reason = CallbackReason.PROVIDER_DENIED.value if error else CallbackReason.MISSING_CODE.value
    except ConflictError:
        reason = CallbackReason.CONFLICT.value
    except (ExternalProviderError, NotFoundError):
        reason = CallbackReason.PROVIDER_ERROR.value
    else:
        return _ui_redirect(
            settings.success_redirect_url,
            provider=provider,
            reason=CallbackReason.CONNECTED.value,
            connection_id=connection.id,
        )

    logger.info(
        "Authorization callback rejected",
        extra={"provider_name": provider, "reason": reason},
    )
    return _ui_redirect(settings.error_redirect_url, provider=provider, reason=reason)


@router.get("/connections/{connection_id}", response_model=PlatformConnectionRead)
def get_connection(
    connection_id: str,
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    return guard.get_connection(caller.tenant_id, caller.user_id, connection_id)


@router.post("/connections/{connection_id}/revoke")
def revoke_connection(
    connection_id: str,
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    guard.revoke_connection(caller.tenant_id, caller.user_id, connection_id)
    return {"success": True}


# Messages

@router.post("/connections/{connection_id}/messages", response_model=MessageAccepted)
def send_message(
    connection_id: str,
    body: SendMessageRequest,
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    result = guard.send_message(
        caller.tenant_id,
        caller.user_id,
        connection_id,
        target=body.target,
        content=body.content,
        origin=body.origin,
    )
    return MessageAccepted(
        message_id=result.message.id, conversation_id=result.conversation.id, created=result.created
    )


@router.post("/connections/{connection_id}/inbound", response_model=MessageAccepted)
def receive_message(
    connection_id: str,
    body: InboundMessage,
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    """Webhook-style ingestion; redelivery of the same external id is a no-op."""
    result = guard.ingest(caller.tenant_id, caller.user_id, connection_id, body)
    return MessageAccepted(
        message_id=result.message.id, conversation_id=result.conversation.id, created=result.created
    )


@router.post("/connections/{connection_id}/sync", response_model=SyncResult)
def sync_connection(
    connection_id: str,
    body: Optional[SyncRequest] = None,
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    cursor = body.cursor if body else None
    return guard.sync_connection(caller.tenant_id, caller.user_id, connection_id, cursor=cursor)


@router.get("/conversations", response_model=List[ConversationRead])
def list_conversations(
    connection_id: Optional[str] = Query(None),
    conversation_status: Optional[ConversationStatusEnum] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    return guard.list_conversations(
        caller.tenant_id,
        caller.user_id,
        connection_id=connection_id,
        status=conversation_status,
        limit=limit,
        offset=offset,
    )


@router.get("/conversations/{conversation_id}/messages", response_model=List[MessageRead])
def list_messages(
    conversation_id: str,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    return guard.list_messages(
        caller.tenant_id, caller.user_id, conversation_id, limit=limit, offset=offset
    )


@router.post("/conversations/{conversation_id}/archive", response_model=ConversationRead)
def archive_conversation(
    conversation_id: str,
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    return guard.archive_conversation(caller.tenant_id, caller.user_id, conversation_id)


@router.get("/analytics", response_model=AnalyticsRead)
def get_analytics(
    caller: CallerScope = Depends(get_caller),
    guard: TenantGuard = Depends(get_guard),
):
    return guard.get_analytics(caller.tenant_id, caller.user_id)
