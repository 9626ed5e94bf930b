"""Errors raised by the OAuth2 credential lifecycle."""

from __future__ import annotations


class MFCloudAuthError(Exception):
    """Base class for all credential lifecycle failures."""


class StoreWriteError(MFCloudAuthError):
    """The token set could not be persisted."""


class CallbackBindError(MFCloudAuthError):
    """The local redirect listener could not bind its port."""

    def __init__(self, port: int, reason: str) -> None:
        super().__init__(f"Could not listen for the OAuth callback on port {port}: {reason}")
        self.port = port
        self.reason = reason


class AuthorizationDeniedError(MFCloudAuthError):
    """The user or the provider refused consent."""

    def __init__(self, error: str, description: str | None = None) -> None:
        message = f"OAuth authorization was denied: {error}"
        if description:
            message += f" ({description})"
        super().__init__(message)
        self.error = error
        self.description = description


class StateMismatchError(MFCloudAuthError):
    """The callback carried a state nonce we did not issue.

    Treat as a security failure (possible CSRF or a callback from another
    session), never as something to retry.
    """

    def __init__(self) -> None:
        super().__init__("OAuth state mismatch - possible CSRF attack")


class CallbackTimeoutError(MFCloudAuthError, TimeoutError):
    """No callback arrived before the listener timed out."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"OAuth callback not received within {timeout:g}s")
        self.timeout = timeout


class TokenEndpointError(MFCloudAuthError):
    """The token endpoint rejected a grant or returned an unusable response.

    ``status`` is ``None`` when no HTTP response was received.
    """

    operation = "Token request"

    def __init__(self, status: int | None, body: str) -> None:
        label = status if status is not None else "no response"
        super().__init__(f"{self.operation} failed ({label}): {body}")
        self.status = status
        self.body = body


class TokenExchangeError(TokenEndpointError):
    """Exchanging an authorization code failed."""

    operation = "Token exchange"


class TokenRefreshError(TokenEndpointError):
    """Refreshing an access token failed; callers fall back to re-authorization."""

    operation = "Token refresh"
