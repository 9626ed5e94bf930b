"""
HTTP client for Money Forward Cloud APIs with automatic OAuth2 authorization.

Every request asks the token provider for a valid token set (normally
``AuthManager.get_valid_token``) and sends it as a Bearer token.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx

from mfcloud.auth.token_store import TokenSet

logger = logging.getLogger("mfcloud.client.api_client")

EXPENSE_BASE_URL = "https://expense.moneyforward.com/api/external"
INVOICE_BASE_URL = "https://invoice.moneyforward.com/api/v3"

TokenProvider = Callable[[], Awaitable[TokenSet]]


class MFApiError(Exception):
    """A Money Forward Cloud API request returned a non-2xx response."""

    def __init__(self, status: int, reason: str, body: str) -> None:
        super().__init__(f"MF API error {status}: {reason}")
        self.status = status
        self.reason = reason
        self.body = body


class MFApiClient:
    """Authorized JSON client for the expense and invoice APIs.

    Usage::

        api = MFApiClient(manager.get_valid_token)
        offices = await api.get(f"{EXPENSE_BASE_URL}/v1/offices")
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.token_provider = token_provider
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a reusable httpx client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _headers(self) -> dict[str, str]:
        tokens = await self.token_provider()
        return {
            "Authorization": f"Bearer {tokens.access_token}",
            "Accept": "application/json",
        }

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        """Send an authorized request and return the decoded JSON body.

        Raises:
            MFApiError: If the response status is not 2xx.
        """
        client = await self._get_client()
        headers = await self._headers()
        logger.debug("%s %s", method, url)
        resp = await client.request(method, url, params=params, json=json_body, headers=headers)

        if not resp.is_success:
            raise MFApiError(resp.status_code, resp.reason_phrase, resp.text)
        if not resp.content:
            return None
        return resp.json()

    async def get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", url, params=params)

    async def post(self, url: str, body: Any = None) -> Any:
        return await self.request("POST", url, json_body=body)

    async def put(self, url: str, body: Any = None) -> Any:
        return await self.request("PUT", url, json_body=body)

    async def delete(self, url: str) -> Any:
        return await self.request("DELETE", url)
