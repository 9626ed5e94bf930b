"""
mfcloud authentication and token management.

Provides the OAuth2 authorization-code flow, token storage, and automatic
refresh for Money Forward Cloud API access.
"""

from mfcloud.auth.callback_server import CallbackResult, ListenerState, OAuthCallbackServer
from mfcloud.auth.errors import (
    AuthorizationDeniedError,
    CallbackBindError,
    CallbackTimeoutError,
    MFCloudAuthError,
    StateMismatchError,
    StoreWriteError,
    TokenEndpointError,
    TokenExchangeError,
    TokenRefreshError,
)
from mfcloud.auth.manager import AuthManager, AuthStatus
from mfcloud.auth.oauth_client import ALL_SCOPES, OAuthClient
from mfcloud.auth.token_store import TokenSet, TokenStore

__all__ = [
    "ALL_SCOPES",
    "AuthManager",
    "AuthStatus",
    "AuthorizationDeniedError",
    "CallbackBindError",
    "CallbackResult",
    "CallbackTimeoutError",
    "ListenerState",
    "MFCloudAuthError",
    "OAuthCallbackServer",
    "OAuthClient",
    "StateMismatchError",
    "StoreWriteError",
    "TokenEndpointError",
    "TokenExchangeError",
    "TokenRefreshError",
    "TokenSet",
    "TokenStore",
]
