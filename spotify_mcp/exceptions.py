"""spotify-mcp exception hierarchy.

All spotify-mcp exceptions inherit from SpotifyMCPException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class SpotifyMCPException(Exception):
    """Base exception for all spotify-mcp errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize spotify-mcp exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (status_code, flow_id, key, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items() if v is not None)
            if ctx:
                return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(SpotifyMCPException):
    """Required configuration is missing or invalid.

    Raised before any network or storage work, e.g. when no
    client identifier has been configured. Never retried.
    """


class StoreError(SpotifyMCPException):
    """Secure credential storage failed.

    Raised when the OS keyring is unavailable or a stored entry
    cannot be decoded. There is no plaintext fallback.
    """

    def __init__(self, message: str, key: str | None = None, **context: Any) -> None:
        """Initialize store error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        key : str, optional
            The account key whose entry was being accessed.
        **context : Any
            Additional context.
        """
        super().__init__(message, key=key, **context)
        self.key = key


class AuthenticationError(SpotifyMCPException):
    """Base exception for all authentication failures.

    Raised when an authentication operation fails, including the
    interactive authorization flow and token exchanges.
    """

    def __init__(
        self,
        message: str,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        flow_id : str, optional
            The unique identifier of the auth flow that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, flow_id=flow_id, **context)
        self.flow_id = flow_id


class AuthorizationDenied(AuthenticationError):
    """The user declined consent or the platform returned an error.

    Carries the ``error`` query parameter from the redirect.
    """

    def __init__(self, message: str, error: str, **context: Any) -> None:
        """Initialize authorization denied error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        error : str
            The ``error`` value sent back by the authorization server.
        **context : Any
            Additional context.
        """
        super().__init__(message, error=error, **context)
        self.error = error


class CallbackError(AuthenticationError):
    """The redirect request was malformed or spoofed."""


class StateMismatch(CallbackError):
    """The callback ``state`` did not match the attempt's CSRF token."""


class MissingCode(CallbackError):
    """The callback carried no authorization code."""


class CallbackServerError(AuthenticationError):
    """The local callback listener could not be started."""


class BrowserLaunchError(AuthenticationError):
    """The system browser could not be opened on the authorization URL."""


class AuthFlowTimeout(AuthenticationError):
    """Authentication flow timed out.

    Only raised when a callback timeout has been configured;
    by default the flow waits for the redirect indefinitely.
    """

    def __init__(
        self,
        message: str,
        timeout: float,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        flow_id : str, optional
            The unique identifier of the auth flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, flow_id=flow_id, timeout=timeout, **context)
        self.timeout = timeout


class TokenError(AuthenticationError):
    """Base exception for token-related failures."""


class TokenEndpointError(TokenError):
    """The token endpoint did not return a usable token set.

    ``status_code`` is ``None`` when the request never produced an
    HTTP response or the response body could not be parsed.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str = "",
        **context: Any,
    ) -> None:
        """Initialize token endpoint error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status returned by the token endpoint.
        body : str
            Raw response body.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code
        self.body = body


class SpotifyApiError(SpotifyMCPException):
    """A Web API request returned a non-success status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str = "",
        **context: Any,
    ) -> None:
        """Initialize API error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status of the failed response.
        body : str
            Raw response body.
        **context : Any
            Additional context (method, url).
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code
        self.body = body


class UpstreamAuthExpired(SpotifyApiError):
    """The Web API still answered 401 after a token refresh."""
