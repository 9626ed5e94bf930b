"""
Credential manager - hands callers a usable access token.

Coordinates the token store (persistence) and the OAuth client (protocol):

1. **Valid token stored** - returned as-is, no network.
2. **Expired token stored** - refreshed with its refresh token.
3. **No token, or refresh failed** - interactive browser authorization.

State is re-read from the store on every call, never cached in memory.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from mfcloud.auth.errors import TokenRefreshError
from mfcloud.auth.oauth_client import OAuthClient
from mfcloud.auth.token_store import TokenSet, TokenStore

logger = logging.getLogger("mfcloud.auth.manager")


@dataclass(frozen=True)
class AuthStatus:
    """Read-only view of the stored credentials."""

    authenticated: bool
    expires_at: int | None = None
    scope: str | None = None


class AuthManager:
    """Orchestrates the OAuth2 token lifecycle.

    Usage::

        store = TokenStore(config.token_path)
        client = OAuthClient(config.oauth)
        manager = AuthManager(store, client)

        tokens = await manager.get_valid_token()
        headers = {"Authorization": f"Bearer {tokens.access_token}"}
    """

    def __init__(self, token_store: TokenStore, oauth_client: OAuthClient) -> None:
        self.token_store = token_store
        self.oauth_client = oauth_client
        self._lock = asyncio.Lock()

    async def get_valid_token(self) -> TokenSet:
        """Return a non-expired token set, refreshing or re-authorizing as needed.

        Concurrent calls are serialized so only one of them refreshes or
        re-authorizes; the others then find the fresh token in the store.

        Raises:
            MFCloudAuthError: If interactive authorization fails or the new
                tokens cannot be saved. Refresh failures are not raised.
        """
        async with self._lock:
            stored = self.token_store.load()

            if stored is None:
                logger.info("No stored tokens. Starting interactive authorization")
                return await self._authorize_and_save()

            if not self.token_store.is_expired(stored):
                return stored

            try:
                refreshed = await self.oauth_client.refresh_token(stored.refresh_token)
            except TokenRefreshError as exc:
                logger.warning("Token refresh failed (%s). Starting interactive authorization", exc)
                return await self._authorize_and_save()

            self.token_store.save(refreshed)
            return refreshed

    async def do_interactive_auth(self) -> TokenSet:
        """Run the browser flow unconditionally and persist the result.

        Used for explicit re-authentication even when a valid token exists.
        Errors propagate unchanged so the caller can name the cause.
        """
        return await self._authorize_and_save()

    def get_auth_status(self) -> AuthStatus:
        """Report whether usable credentials are stored. Never raises."""
        stored = self.token_store.load()
        if stored is None:
            return AuthStatus(authenticated=False)
        return AuthStatus(
            authenticated=not self.token_store.is_expired(stored),
            expires_at=stored.expires_at,
            scope=stored.scope,
        )

    async def _authorize_and_save(self) -> TokenSet:
        tokens = await self.oauth_client.authorize()
        self.token_store.save(tokens)
        logger.info("Stored new tokens")
        return tokens
