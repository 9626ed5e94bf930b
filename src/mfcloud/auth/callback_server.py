"""
Local redirect listener for the OAuth2 authorization-code flow.

Binds a caller-given local port, waits for the browser to be redirected to
the callback path, and resolves exactly once: success with an authorization
code, denial, state mismatch, or timeout. The port is released as soon as an
outcome is reached.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import html
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from mfcloud.auth.errors import (
    AuthorizationDeniedError,
    CallbackBindError,
    CallbackTimeoutError,
    StateMismatchError,
)

logger = logging.getLogger("mfcloud.auth.callback_server")

CALLBACK_TIMEOUT_SECONDS = 120.0


class ListenerState(str, Enum):
    LISTENING = "listening"
    SUCCEEDED = "succeeded"
    DENIED = "denied"
    STATE_MISMATCH = "state_mismatch"
    TIMED_OUT = "timed_out"
    BIND_FAILED = "bind_failed"


@dataclass(frozen=True)
class CallbackResult:
    """Terminal outcome of one listener run."""

    state: ListenerState
    code: str | None = None
    error: str | None = None
    error_description: str | None = None


_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>mfcloud - {title}</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, sans-serif;
               display: flex; justify-content: center; align-items: center;
               height: 100vh; margin: 0; background: {background}; }}
        .card {{ background: white; padding: 40px; border-radius: 12px;
                box-shadow: 0 4px 6px rgba(0,0,0,0.1); text-align: center; }}
        h1 {{ color: {color}; margin-bottom: 10px; }}
        p {{ color: #666; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>{title}</h1>
        <p>{message}</p>
    </div>
</body>
</html>
"""


def _render_page(title: str, message: str, *, ok: bool) -> bytes:
    page = _PAGE_TEMPLATE.format(
        title=html.escape(title),
        message=html.escape(message),
        background="#f0fdf4" if ok else "#fef2f2",
        color="#16a34a" if ok else "#dc2626",
    )
    return page.encode("utf-8")


_ALREADY_COMPLETED = (
    410,
    _render_page(
        "Already completed",
        "This sign-in request has already finished. You can close this window.",
        ok=False,
    ),
)


class _CallbackHandler(BaseHTTPRequestHandler):
    """Routes one request to the owning listener."""

    server: _CallbackHTTPServer
    # Bounds reads so a stalled client cannot hold up shutdown.
    timeout = 10

    def do_GET(self) -> None:
        listener = self.server.listener
        parsed = urlparse(self.path)
        if parsed.path != listener.path:
            self._send(404, b"Not Found", content_type="text/plain; charset=utf-8")
            return

        status, body = listener.handle_callback(parse_qs(parsed.query))
        self._send(status, body)

    def _send(self, status: int, body: bytes, *, content_type: str = "text/html; charset=utf-8") -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        """Route request logs through the module logger instead of stderr."""
        logger.debug("callback server: " + format, *args)


class _CallbackHTTPServer(ThreadingHTTPServer):
    # Each request gets its own thread; shutdown and close never wait on a
    # stalled client.
    daemon_threads = True
    block_on_close = False

    def __init__(self, address: tuple[str, int], listener: OAuthCallbackServer) -> None:
        self.listener = listener
        super().__init__(address, _CallbackHandler)


class OAuthCallbackServer:
    """Single-shot local HTTP server capturing the OAuth2 callback.

    Usage::

        server = OAuthCallbackServer(port=3456, expected_state=state)
        server.start()  # raises CallbackBindError if the port is taken
        try:
            code = await server.wait_for_code()
        finally:
            server.stop()
    """

    def __init__(
        self,
        port: int,
        expected_state: str,
        *,
        host: str = "localhost",
        path: str = "/callback",
        timeout: float = CALLBACK_TIMEOUT_SECONDS,
    ) -> None:
        self.port = port
        self.host = host
        self.path = path
        self.timeout = timeout
        self._expected_state = expected_state
        self._server: _CallbackHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._result: concurrent.futures.Future[CallbackResult] = concurrent.futures.Future()
        self._state = ListenerState.LISTENING

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def result(self) -> CallbackResult | None:
        """The resolved outcome, or None while still listening."""
        return self._result.result() if self._result.done() else None

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{self.path}"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Bind the port and start serving in a background thread.

        Raises:
            CallbackBindError: If the port is in use or cannot be bound.
        """
        try:
            self._server = _CallbackHTTPServer((self.host, self.port), self)
        except OSError as exc:
            self._resolve(CallbackResult(ListenerState.BIND_FAILED, error=str(exc)))
            raise CallbackBindError(self.port, exc.strerror or str(exc)) from exc

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.1},
            name=f"oauth-callback-{self.port}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("OAuth callback server listening on %s", self.redirect_uri)

    def stop(self) -> None:
        """Stop serving and release the port. Safe to call more than once."""
        server, self._server = self._server, None
        if server is None:
            return
        if self._thread is not None:
            server.shutdown()
            self._thread.join(timeout=5)
            self._thread = None
        server.server_close()
        logger.debug("OAuth callback server on port %d stopped", self.port)

    async def wait_for_code(self) -> str:
        """Wait for the callback and return the authorization code.

        The server is stopped before this returns or raises.

        Raises:
            AuthorizationDeniedError: The provider reported an error.
            StateMismatchError: The callback carried an unexpected state.
            CallbackTimeoutError: Nothing arrived within ``timeout`` seconds.
        """
        try:
            pending = asyncio.wrap_future(self._result)
            try:
                await asyncio.wait_for(asyncio.shield(pending), timeout=self.timeout)
            except asyncio.TimeoutError:
                # A callback may still win the race here; first resolution counts.
                self._resolve(CallbackResult(ListenerState.TIMED_OUT))
            result = self._result.result()
        finally:
            await asyncio.to_thread(self.stop)

        if result.state is ListenerState.SUCCEEDED and result.code:
            return result.code
        if result.state is ListenerState.DENIED:
            raise AuthorizationDeniedError(result.error or "access_denied", result.error_description)
        if result.state is ListenerState.STATE_MISMATCH:
            raise StateMismatchError()
        raise CallbackTimeoutError(self.timeout)

    # ------------------------------------------------------------------
    # Request handling (runs on the server thread)
    # ------------------------------------------------------------------

    def handle_callback(self, params: dict[str, list[str]]) -> tuple[int, bytes]:
        """Resolve the listener from callback query parameters.

        Returns the HTTP status and page to send back to the browser.
        """
        error = _first(params, "error")
        if error is not None:
            description = _first(params, "error_description")
            if not self._resolve(CallbackResult(ListenerState.DENIED, error=error, error_description=description)):
                return _ALREADY_COMPLETED
            logger.info("OAuth authorization denied: %s", error)
            return 400, _render_page("Authorization failed", description or error, ok=False)

        if _first(params, "state") != self._expected_state:
            if not self._resolve(CallbackResult(ListenerState.STATE_MISMATCH)):
                return _ALREADY_COMPLETED
            logger.warning("OAuth callback rejected: state mismatch")
            return 400, _render_page(
                "Authorization failed",
                "Invalid state parameter. Please start the sign-in again.",
                ok=False,
            )

        code = _first(params, "code")
        if not code:
            if self._result.done():
                return _ALREADY_COMPLETED
            return 400, _render_page("Authorization failed", "No authorization code received.", ok=False)

        if not self._resolve(CallbackResult(ListenerState.SUCCEEDED, code=code)):
            return _ALREADY_COMPLETED
        return 200, _render_page(
            "Connected!",
            "Authentication succeeded. You can close this window and return to your assistant.",
            ok=True,
        )

    def _resolve(self, result: CallbackResult) -> bool:
        """Record the outcome if none has been recorded yet. First call wins."""
        with self._lock:
            if self._result.done():
                return False
            self._state = result.state
            self._result.set_result(result)
            return True


def _first(params: dict[str, list[str]], key: str) -> str | None:
    values = params.get(key)
    return values[0] if values else None
