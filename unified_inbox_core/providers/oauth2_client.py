"""Generic OAuth2 provider client over httpx.

Per-provider differences (endpoints, scope separator, which metadata key holds
the account name) are configuration carried by ``ProviderSettings``.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..config import ProviderSettings
from ..exceptions import (
    ErrorCode,
    ExternalProviderError,
    ProviderGrantRejectedError,
    ServiceError,
)
from ..schemas.connection_schemas import ConnectionCredentials, TokenGrant
from ..schemas.message_schemas import FetchPage, SendReceipt
from ..utils.logger import get_logger
from .base import ProviderClient

# Never copied into provider_metadata
_SECRET_KEYS = frozenset(["access_token", "refresh_token", "id_token", "client_secret"])
_TOKEN_KEYS = _SECRET_KEYS | {"expires_in", "token_type"}

# OAuth2 error codes meaning the grant itself is dead
_REJECTED_GRANT_ERRORS = frozenset(
    ["invalid_grant", "invalid_refresh_token", "token_revoked", "invalid_client"]
)


def _flatten_metadata(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Keep non-secret fields; nested objects one level deep become ``outer_inner`` keys."""
    metadata: Dict[str, Any] = {}
    for key, value in payload.items():
        if key in _TOKEN_KEYS:
            continue
        if isinstance(value, dict):
            for inner_key, inner_value in value.items():
                if inner_key in _SECRET_KEYS or isinstance(inner_value, (dict, list)):
                    continue
                metadata[f"{key}_{inner_key}"] = inner_value
        else:
            metadata[key] = value
    return metadata


class OAuth2ProviderClient(ProviderClient):
    """Standard authorization-code OAuth2 provider reached over HTTPS."""

    def __init__(
        self,
        settings: ProviderSettings,
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.settings = settings
        self.timeout_seconds = timeout_seconds
        self._http = http_client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))
        self._owns_http = http_client is None
        self.logger = get_logger()

    @property
    def provider_name(self) -> str:
        return self.settings.name

    @property
    def label(self) -> str:
        return self.settings.label

    def is_configured(self) -> bool:
        return self.settings.is_configured

    def build_authorization_url(
        self, state: str, redirect_uri: str, scopes: Optional[List[str]] = None
    ) -> str:
        requested = scopes if scopes else self.settings.default_scopes
        params = {
            "client_id": self.settings.client_id or "",
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if requested:
            params["scope"] = self.settings.scope_separator.join(requested)
        params.update(self.settings.extra_authorize_params)
        return f"{self.settings.authorize_url}?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        payload = self._post_token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            operation="exchange_code",
        )
        return self._to_grant(payload, operation="exchange_code")

    def refresh_token(self, refresh_token: str) -> TokenGrant:
        payload = self._post_token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            operation="refresh_token",
        )
        return self._to_grant(payload, operation="refresh_token")

    def send(self, connection: ConnectionCredentials, target: str, content: str) -> SendReceipt:
        url = self._require_endpoint(self.settings.send_url, "send_url")
        response = self._request(
            "POST",
            url,
            operation="send",
            headers=self._bearer(connection),
            json={"target": target, "content": content},
        )
        self._raise_for_status(response, operation="send")
        body = self._json(response, operation="send")
        message_id = body.get("id") or body.get("message_id") or body.get("ts")
        if not message_id:
            raise ExternalProviderError(
                "Provider send response carried no message id",
                provider_name=self.provider_name,
                operation="send",
            )
        return SendReceipt(provider_message_id=str(message_id))

    def fetch(self, connection: ConnectionCredentials, cursor: Optional[str] = None) -> FetchPage:
        url = self._require_endpoint(self.settings.fetch_url, "fetch_url")
        params = {"cursor": cursor} if cursor else None
        response = self._request(
            "GET", url, operation="fetch", headers=self._bearer(connection), params=params
        )
        self._raise_for_status(response, operation="fetch")
        body = self._json(response, operation="fetch")
        try:
            return FetchPage(items=body.get("items", []), next_cursor=body.get("next_cursor"))
        except PydanticValidationError as e:
            raise ExternalProviderError(
                "Provider returned malformed messages",
                provider_name=self.provider_name,
                operation="fetch",
                cause=e,
            ) from e

    def account_name(self, provider_metadata: Dict[str, Any]) -> Optional[str]:
        value = provider_metadata.get(self.settings.account_name_key)
        return str(value) if value else None

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    # Internal helpers

    def _bearer(self, connection: ConnectionCredentials) -> Dict[str, str]:
        return {"Authorization": f"Bearer {connection.access_token}"}

    def _require_endpoint(self, url: Optional[str], setting: str) -> str:
        if not url:
            raise ServiceError(
                f"Provider {self.provider_name} has no {setting} configured",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation=setting,
                provider_name=self.provider_name,
            )
        return url

    def _request(self, method: str, url: str, operation: str, **kwargs) -> httpx.Response:
        try:
            return self._http.request(method, url, timeout=self.timeout_seconds, **kwargs)
        except httpx.TimeoutException as e:
            raise ExternalProviderError(
                f"Provider {self.provider_name} timed out during {operation}",
                provider_name=self.provider_name,
                error_code=ErrorCode.TIMEOUT_ERROR,
                operation=operation,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise ExternalProviderError(
                f"Provider {self.provider_name} request failed during {operation}",
                provider_name=self.provider_name,
                operation=operation,
                cause=e,
            ) from e

    def _post_token_request(self, form: Dict[str, str], operation: str) -> Dict[str, Any]:
        form = {
            **form,
            "client_id": self.settings.client_id or "",
            "client_secret": self.settings.client_secret or "",
        }
        response = self._request(
            "POST",
            self.settings.token_url,
            operation=operation,
            data=form,
            headers={"Accept": "application/json"},
        )

        body: Dict[str, Any] = {}
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = {}
        if not isinstance(body, dict):
            body = {}

        # Some providers answer 200 with {"ok": false, "error": "..."}
        error = body.get("error")
        if response.is_success and not error:
            return body

        if isinstance(error, dict):
            error = error.get("code") or error.get("type")
        if operation == "refresh_token" and error in _REJECTED_GRANT_ERRORS:
            raise ProviderGrantRejectedError(
                f"Provider {self.provider_name} rejected the refresh token",
                provider_name=self.provider_name,
                provider_error=error,
                http_status=response.status_code,
            )
        raise ExternalProviderError(
            f"Provider {self.provider_name} token endpoint failed during {operation}",
            provider_name=self.provider_name,
            operation=operation,
            provider_error=error,
            http_status=response.status_code,
        )

    def _to_grant(self, payload: Dict[str, Any], operation: str) -> TokenGrant:
        expires_in = payload.get("expires_in")
        try:
            return TokenGrant(
                access_token=payload.get("access_token") or "",
                refresh_token=payload.get("refresh_token"),
                expires_in=int(expires_in) if expires_in is not None else None,
                provider_metadata=_flatten_metadata(payload),
            )
        except (PydanticValidationError, TypeError, ValueError) as e:
            raise ExternalProviderError(
                f"Provider {self.provider_name} returned an unusable token response",
                provider_name=self.provider_name,
                operation=operation,
                cause=e,
            ) from e

    def _raise_for_status(self, response: httpx.Response, operation: str) -> None:
        if not response.is_success:
            raise ExternalProviderError(
                f"Provider {self.provider_name} returned HTTP {response.status_code} during {operation}",
                provider_name=self.provider_name,
                operation=operation,
                http_status=response.status_code,
            )

    def _json(self, response: httpx.Response, operation: str) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise ExternalProviderError(
                f"Provider {self.provider_name} returned invalid JSON during {operation}",
                provider_name=self.provider_name,
                operation=operation,
                cause=e,
            ) from e
        if not isinstance(body, dict):
            raise ExternalProviderError(
                f"Provider {self.provider_name} returned an unexpected body during {operation}",
                provider_name=self.provider_name,
                operation=operation,
            )
        return body
