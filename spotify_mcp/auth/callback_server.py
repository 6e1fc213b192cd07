"""Ephemeral localhost HTTP server for OAuth2 redirect capture.

Binds the preferred redirect port (falling back to an OS-assigned port
when it is taken), accepts exactly one redirect on the callback path,
validates it against the attempt's CSRF token, and hands the outcome to
an asyncio future that the flow awaits.

The HTTP side runs on stdlib ``http.server`` in a daemon thread, one
thread per connection, so an idle socket cannot hold up the redirect.
The outcome crosses back to the event loop with ``call_soon_threadsafe``.
"""

# pylint: disable=logging-too-many-args

# pylint: disable=C0103,W0212

from __future__ import annotations

import asyncio
import errno
import html
import logging
import threading

from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from ..exceptions import (
    AuthenticationError,
    AuthorizationDenied,
    CallbackServerError,
    MissingCode,
    StateMismatch,
)


logger = logging.getLogger("spotify_mcp.auth")

_ADDR_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}

# Seconds a connection may sit idle before its handler thread gives up
HANDLER_TIMEOUT = 10

_SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head><title>Spotify Authorization Complete</title>
<style>
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #121212; color: #ffffff; }
  .card { text-align: center; padding: 2rem 3rem; background: #181818;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.4); }
  h1 { font-size: 1.5rem; margin-bottom: 0.5rem; color: #1db954; }
  p { color: #b3b3b3; }
</style></head>
<body><div class="card">
  <h1>Spotify auth complete</h1>
  <p>You can close this window.</p>
</div></body></html>"""

_ERROR_HTML = """<!DOCTYPE html>
<html>
<head><title>Spotify Authorization Failed</title>
<style>
  body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #121212; color: #ffffff; }}
  .card {{ text-align: center; padding: 2rem 3rem; background: #181818;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.4); }}
  h1 {{ font-size: 1.5rem; margin-bottom: 0.5rem; color: #e22134; }}
  p {{ color: #b3b3b3; }}
</style></head>
<body><div class="card">
  <h1>Auth error</h1>
  <p>{error}</p>
</div></body></html>"""


class OAuthCallbackServer:
    """One-shot localhost listener for a single authorization attempt.

    Parameters
    ----------
    expected_state : str
        The CSRF token the redirect must carry back in ``state``.
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Preferred port. ``0`` asks the OS for an ephemeral port.
    callback_path : str
        The only path that is handled (default ``"/callback"``).
    """

    def __init__(
        self,
        expected_state: str,
        host: str = "127.0.0.1",
        port: int = 0,
        callback_path: str = "/callback",
    ) -> None:
        """Initialize the callback server."""
        self._expected_state = expected_state
        self._host = host
        self._port = port
        self._callback_path = callback_path
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._future: asyncio.Future[str] | None = None
        self._settled = threading.Event()
        self._claim_lock = threading.Lock()
        self._actual_port: int = 0

    @property
    def port(self) -> int:
        """The port actually bound (0 before ``start``)."""
        return self._actual_port

    @property
    def redirect_uri(self) -> str:
        """Get the redirect URI for this callback server.

        Returns
        -------
        str
            The full redirect URI (e.g. ``http://127.0.0.1:5173/callback``).
        """
        return f"http://{self._host}:{self._actual_port}{self._callback_path}"

    @property
    def settled(self) -> bool:
        """Whether a terminal callback has been received."""
        return self._settled.is_set()

    def _claim(self) -> bool:
        """Mark the attempt settled; True only for the first caller."""
        with self._claim_lock:
            if self._settled.is_set():
                return False
            self._settled.set()
            return True

    def _evaluate(self, params: dict[str, list[str]]) -> str | AuthenticationError:
        """Turn callback query parameters into a code or a failure."""
        code = params.get("code", [None])[0]
        state = params.get("state", [None])[0]
        error = params.get("error", [None])[0]

        if error:
            return AuthorizationDenied(f"Authorization denied: {error}", error=error)
        if state != self._expected_state:
            return StateMismatch("State parameter mismatch (possible CSRF attack)")
        if not code:
            return MissingCode("No authorization code in callback")
        return code

    def _settle(self, outcome: str | BaseException) -> None:
        """Resolve the pending future (runs on the event loop)."""
        if self._future is None or self._future.done():
            return
        if isinstance(outcome, BaseException):
            self._future.set_exception(outcome)
        else:
            self._future.set_result(outcome)

    def _hand_off(self, outcome: str | BaseException) -> None:
        """Pass an outcome from the server thread to the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("Callback received after the event loop closed; dropping it")
            return
        loop.call_soon_threadsafe(self._settle, outcome)

    def _bind(self, handler: type[BaseHTTPRequestHandler]) -> ThreadingHTTPServer:
        """Bind the preferred port, falling back to an ephemeral one."""
        try:
            return ThreadingHTTPServer((self._host, self._port), handler)
        except OSError as exc:
            if self._port == 0 or exc.errno not in _ADDR_IN_USE:
                msg = f"Could not start callback listener on {self._host}:{self._port}: {exc}"
                raise CallbackServerError(msg) from exc
            logger.warning(
                "Port %s in use, falling back to an ephemeral port",
                self._port,
            )
        try:
            return ThreadingHTTPServer((self._host, 0), handler)
        except OSError as exc:
            msg = f"Could not start callback listener on an ephemeral port: {exc}"
            raise CallbackServerError(msg) from exc

    async def start(self) -> str:
        """Bind the listener and start serving on a daemon thread.

        Returns
        -------
        str
            The redirect URI to send to the authorization server,
            reflecting any port fallback.

        Raises
        ------
        CallbackServerError
            If neither the preferred nor an ephemeral port can be bound.
        """
        self._loop = asyncio.get_running_loop()
        self._future = self._loop.create_future()
        server_ref = self

        class _CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for OAuth2 callbacks."""

            timeout = HANDLER_TIMEOUT

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)
                if parsed.path != server_ref._callback_path:
                    self.send_error(404)
                    return

                # Requests are handled concurrently; only the first claim counts.
                if not server_ref._claim():
                    self.send_error(410, "Authorization attempt already completed")
                    return

                outcome = server_ref._evaluate(parse_qs(parsed.query))
                if isinstance(outcome, AuthenticationError):
                    logger.error("OAuth callback rejected: %s", outcome.message)
                    safe_msg = html.escape(outcome.message, quote=True)
                    self._send_html(_ERROR_HTML.format(error=safe_msg), status=400)
                else:
                    logger.info("Authorization code received")
                    self._send_html(_SUCCESS_HTML)

                server_ref._hand_off(outcome)
                # Schedule shutdown on a background thread to avoid deadlock
                threading.Thread(target=self._shutdown_server, daemon=True).start()

            def _send_html(self, html_content: str, status: int = 200) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def _shutdown_server(self) -> None:
                """Shut down the HTTP server."""
                server = server_ref._server
                if server:
                    server.shutdown()

            def log_message(self, *args: Any) -> None:
                """Redirect HTTP server logging to the spotify_mcp logger."""
                if args:
                    logger.debug("OAuth callback server: %s", args[0] % args[1:])

        self._server = self._bind(_CallbackHandler)
        self._actual_port = self._server.server_address[1]

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        logger.info("Redirect server listening on port %s", self._actual_port)
        return self.redirect_uri

    async def wait_for_code(self, timeout: float | None = None) -> str:
        """Wait for the redirect and return its authorization code.

        Parameters
        ----------
        timeout : float, optional
            Maximum seconds to wait. ``None`` waits indefinitely.

        Returns
        -------
        str
            The authorization code.

        Raises
        ------
        AuthorizationDenied
            If the redirect carried an ``error`` parameter.
        StateMismatch
            If the redirect's ``state`` did not match.
        MissingCode
            If the redirect carried no code.
        TimeoutError
            If ``timeout`` elapsed first.
        """
        if self._future is None:
            msg = "Callback server has not been started"
            raise RuntimeError(msg)
        if timeout is None:
            return await self._future
        return await asyncio.wait_for(asyncio.shield(self._future), timeout)

    def _cancel_pending(self) -> None:
        """Cancel the future if no outcome arrived (event loop only)."""
        if self._future is not None and not self._future.done():
            self._future.cancel()

    def _shutdown(self) -> None:
        """Stop serving and release the socket. Blocks until the serve loop exits."""
        server, thread = self._server, self._thread
        self._server = None
        self._thread = None
        if server:
            server.shutdown()
            server.server_close()
        if thread and thread.is_alive():
            thread.join(timeout=5)

    def stop(self) -> None:
        """Shut down the listener and release its socket.

        Blocks the calling thread; coroutines use ``aclose`` instead.
        """
        self._cancel_pending()
        self._shutdown()

    async def aclose(self) -> None:
        """Shut down the listener without blocking the event loop."""
        self._cancel_pending()
        await asyncio.get_running_loop().run_in_executor(None, self._shutdown)
