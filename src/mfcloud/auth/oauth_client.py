"""
OAuth2 Authorization Code client for the Money Forward Cloud API.

The URL and request-body builders are pure functions of the configured
client and their arguments; only ``exchange_code``, ``refresh_token`` and
``authorize`` touch the network.
"""

from __future__ import annotations

import logging
import secrets
import sys
import webbrowser
from typing import Any, Callable
from urllib.parse import urlencode

import httpx

from mfcloud.auth.callback_server import OAuthCallbackServer
from mfcloud.auth.errors import TokenEndpointError, TokenExchangeError, TokenRefreshError
from mfcloud.auth.token_store import TokenSet
from mfcloud.config import OAuthSettings

logger = logging.getLogger("mfcloud.auth.oauth_client")

# Office/user settings, expense transactions and reports, invoice data.
ALL_SCOPES = " ".join(
    [
        "office_setting:write",
        "user_setting:write",
        "transaction:write",
        "report:write",
        "mfc/invoice/data.read",
        "mfc/invoice/data.write",
    ]
)

BrowserOpener = Callable[[str], bool]


def open_in_browser(url: str) -> bool:
    """Open ``url`` in the user's default browser."""
    return webbrowser.open(url)


class OAuthClient:
    """OAuth2 Authorization Code grant against the Money Forward authorization server.

    Usage::

        client = OAuthClient(OAuthSettings(client_id="...", client_secret="..."))

        # Interactive authorization (opens a browser)
        tokens = await client.authorize()

        # Token refresh
        tokens = await client.refresh_token(tokens.refresh_token)
    """

    def __init__(
        self,
        settings: OAuthSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        browser: BrowserOpener | None = None,
    ) -> None:
        self.settings = settings
        self.browser = browser or open_in_browser
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a reusable httpx client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.settings.http_timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Protocol framing
    # ------------------------------------------------------------------

    def build_authorization_url(self, state: str) -> str:
        """Build the consent page URL the user visits to grant access."""
        params = {
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
            "response_type": "code",
            "scope": ALL_SCOPES,
            "state": state,
        }
        return f"{self.settings.authorize_url}?{urlencode(params)}"

    def build_token_request_body(self, code: str) -> dict[str, str]:
        """Form body exchanging an authorization code for tokens."""
        return {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "redirect_uri": self.settings.redirect_uri,
        }

    def build_refresh_request_body(self, refresh_token: str) -> dict[str, str]:
        """Form body minting a new access token from a refresh token."""
        return {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
        }

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange an authorization code for access and refresh tokens.

        Raises:
            TokenExchangeError: If the token endpoint cannot be reached or
                returns an error or an unusable payload.
        """
        status, payload = await self._request_token(self.build_token_request_body(code), TokenExchangeError)
        try:
            tokens = TokenSet.from_token_response(payload)
        except ValueError as exc:
            raise TokenExchangeError(status, str(exc)) from exc
        logger.info("Exchanged authorization code for tokens")
        return tokens

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """Use a refresh token to obtain a new access token.

        Providers that do not rotate refresh tokens may omit one from the
        response; the token that was sent is kept in that case.

        Raises:
            TokenRefreshError: On any failure, so callers can fall back to
                interactive authorization.
        """
        status, payload = await self._request_token(self.build_refresh_request_body(refresh_token), TokenRefreshError)
        try:
            tokens = TokenSet.from_token_response(payload, fallback_refresh_token=refresh_token)
        except ValueError as exc:
            raise TokenRefreshError(status, str(exc)) from exc
        logger.info("Refreshed access token")
        return tokens

    async def _request_token(
        self,
        body: dict[str, str],
        error_cls: type[TokenEndpointError],
    ) -> tuple[int, dict[str, Any]]:
        """POST a grant to the token endpoint; return the status and decoded object."""
        client = await self._get_client()
        try:
            resp = await client.post(
                self.settings.token_url,
                data=body,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise error_cls(None, f"{type(exc).__name__}: {exc}") from exc

        if not resp.is_success:
            raise error_cls(resp.status_code, resp.text)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise error_cls(resp.status_code, resp.text) from exc
        if not isinstance(payload, dict):
            raise error_cls(resp.status_code, resp.text)
        return resp.status_code, payload

    # ------------------------------------------------------------------
    # Interactive browser flow
    # ------------------------------------------------------------------

    async def authorize(self, port: int | None = None) -> TokenSet:
        """Run the full interactive authorization flow.

        Starts the local callback listener, opens the user's browser at the
        consent page, waits for the redirect and exchanges the code.

        Args:
            port: Local port for the callback listener; defaults to the port
                of the configured redirect URI.

        Raises:
            CallbackBindError: The listener port is unavailable.
            AuthorizationDeniedError: Consent was refused.
            StateMismatchError: The callback state did not match.
            CallbackTimeoutError: No callback arrived in time.
            TokenExchangeError: The code could not be exchanged.
        """
        state = secrets.token_urlsafe(32)
        auth_url = self.build_authorization_url(state)

        server = OAuthCallbackServer(
            port=port or self.settings.callback_port,
            expected_state=state,
            path=self.settings.callback_path,
            timeout=self.settings.callback_timeout,
        )
        server.start()

        try:
            # stdout may carry a protocol stream; the human reads stderr.
            print("\nPlease open this URL in your browser to authenticate:", file=sys.stderr)
            print(auth_url, file=sys.stderr)
            logger.info("Opening browser for Money Forward authorization")
            try:
                opened = self.browser(auth_url)
            except webbrowser.Error as exc:
                logger.warning("Could not open browser: %s", exc)
                opened = False
            if not opened:
                print("Could not open a browser automatically. Please open the URL manually.", file=sys.stderr)

            code = await server.wait_for_code()
        finally:
            server.stop()

        return await self.exchange_code(code)
