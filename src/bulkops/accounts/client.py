"""Async client for the temporary-mail REST API (mail.tm-compatible).

Every failure surfaces as an OperationError subclass carrying the HTTP
status, so bulk workers can hand errors straight to the executor:
throttling, 5xx and network problems are TransientError (retried), other
4xx responses are PermanentError (recorded without retry).

Example:
    >>> async with MailApiClient() as api:
    ...     account = await api.create_account("qa-1@duckmail.sbs", "S3cret!pass")
    ...     token = await api.get_token(account.address, "S3cret!pass")
    ...     inbox = await api.get_messages(token.token)
"""

from __future__ import annotations

import time
from types import TracebackType
from typing import Any

import httpx

from bulkops.foundation.config import HttpSettings, get_settings
from bulkops.foundation.errors import ErrorCode, PermanentError, TransientError
from bulkops.runtime.observability import BoundLogger, get_logger

from .models import Account, Domain, Message, Token

PROVIDER_HEADER = "X-API-Provider-Base-URL"
_COLLECTION_KEY = "hydra:member"


def _error_message(response: httpx.Response) -> str:
    """Best-effort human message from an API error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("hydra:description", "detail", "message", "error"):
            if isinstance(body.get(key), str):
                return body[key]
    return response.reason_phrase


class MailApiClient:
    """Thin typed wrapper over ``httpx.AsyncClient``.

    Args:
        settings: Connection settings (default: BULKOPS_HTTP_* environment)
        client: Pre-built httpx client, used as is
        transport: Transport for the internally built client, e.g. httpx.MockTransport
        logger: Structured logger
    """

    def __init__(
        self,
        settings: HttpSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self.settings = settings or get_settings().http
        self.log = logger or get_logger("bulkops.api", provider=self.settings.provider)
        self.request_count = 0
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.timeout,
            headers=self._default_headers(),
            limits=httpx.Limits(max_connections=self.settings.max_connections or None),
            transport=transport,
        )

    def _default_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": self.settings.user_agent}
        if self.settings.provider_base_url:
            headers[PROVIDER_HEADER] = self.settings.provider_base_url
        return headers

    async def __aenter__(self) -> MailApiClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # ─────────────────────────────────────────────────────────────────
    # Endpoints
    # ─────────────────────────────────────────────────────────────────

    async def create_account(self, address: str, password: str) -> Account:
        data = await self._request("POST", "/accounts", json={"address": address, "password": password})
        return Account.model_validate(data).model_copy(
            update={"password": password, "provider_id": self.settings.provider}
        )

    async def get_token(self, address: str, password: str) -> Token:
        data = await self._request("POST", "/token", json={"address": address, "password": password})
        return Token.model_validate(data)

    async def get_account(self, token: str) -> Account:
        data = await self._request("GET", "/me", token=token)
        return Account.model_validate(data)

    async def get_messages(self, token: str, page: int = 1) -> list[Message]:
        data = await self._request("GET", "/messages", token=token, params={"page": page})
        return [Message.model_validate(m) for m in data]

    async def get_domains(self) -> list[Domain]:
        data = await self._request("GET", "/domains")
        return [Domain.model_validate(d) for d in data]

    # ─────────────────────────────────────────────────────────────────
    # Transport
    # ─────────────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        self.request_count += 1
        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, headers=headers, json=json, params=params)
        except httpx.TimeoutException as e:
            raise TransientError(f"{method} {path} timed out", code=ErrorCode.TIMEOUT,
                                 context={"path": path}) from e
        except httpx.RequestError as e:
            raise TransientError(f"{method} {path} failed: {e}", code=ErrorCode.NETWORK_ERROR,
                                 context={"path": path}) from e

        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        self.log.debug("api request", method=method, path=path, status=response.status_code, duration_ms=elapsed_ms)
        if response.is_success:
            return self._unwrap(response)

        status = response.status_code
        detail = _error_message(response)
        message = f"{method} {path} returned {status}: {detail}"
        ctx = {"path": path, "details": detail}
        if status == 429 or status >= 500:
            raise TransientError(message, status_code=status, context=ctx)
        raise PermanentError(message, status_code=status, context=ctx)

    @staticmethod
    def _unwrap(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise PermanentError(f"invalid JSON from {response.request.url.path}", code=ErrorCode.PARSE_ERROR,
                                 status_code=response.status_code) from e
        if isinstance(body, dict) and _COLLECTION_KEY in body:
            return body[_COLLECTION_KEY]
        return body
