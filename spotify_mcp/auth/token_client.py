"""Spotify accounts service client.

Builds the browser authorization URL and performs the two token
endpoint exchanges (authorization code and refresh token) for a
public PKCE client.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from ..exceptions import TokenEndpointError
from ..types import OAuthTokenSet


if TYPE_CHECKING:
    from collections.abc import Callable

    from .pkce import PKCEChallenge


logger = logging.getLogger("spotify_mcp.auth")

SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"  # noqa: S105

DEFAULT_SCOPES = [
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
    "playlist-read-private",
    "playlist-read-collaborative",
]


class TokenEndpointClient:
    """Talks to the Spotify accounts service on behalf of a public client.

    Parameters
    ----------
    client_id : str
        The application's client ID.
    scopes : list[str], optional
        Requested scopes (defaults to playback and playlist-read scopes).
    authorize_url : str
        The authorization endpoint.
    token_url : str
        The token endpoint.
    http_client : httpx.AsyncClient, optional
        Client used for token requests. Created lazily when omitted.
    timeout : float
        Request timeout in seconds for the lazily created client.
    clock : callable, optional
        Returns the current Unix time; used to turn ``expires_in`` into
        an absolute expiry.
    """

    def __init__(
        self,
        client_id: str,
        scopes: list[str] | None = None,
        authorize_url: str = SPOTIFY_AUTHORIZE_URL,
        token_url: str = SPOTIFY_TOKEN_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the token endpoint client."""
        self.client_id = client_id
        self.scopes = list(scopes) if scopes is not None else list(DEFAULT_SCOPES)
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.timeout = timeout
        self._clock = clock or time.time
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def build_authorize_url(self, redirect_uri: str, state: str, pkce: PKCEChallenge) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        redirect_uri : str
            The callback URL the browser is sent back to.
        state : str
            CSRF protection nonce.
        pkce : PKCEChallenge
            PKCE challenge for this attempt.

        Returns
        -------
        str
            The full authorization URL.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "code_challenge_method": pkce.method,
            "code_challenge": pkce.challenge,
            "state": state,
            "scope": " ".join(self.scopes),
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, verifier: str, redirect_uri: str) -> OAuthTokenSet:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        code : str
            The authorization code from the callback.
        verifier : str
            The PKCE code verifier of the attempt that produced ``code``.
        redirect_uri : str
            The redirect URI used in the authorization request.

        Returns
        -------
        OAuthTokenSet
            The newly issued token set.

        Raises
        ------
        TokenEndpointError
            If the endpoint rejects the exchange or omits a refresh token.
        """
        logger.info("Exchanging authorization code for tokens")
        raw = await self._post_token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self.client_id,
                "code_verifier": verifier,
            },
            operation="code exchange",
        )
        tokens = self._parse_tokens(raw, operation="code exchange")
        if not tokens.refresh_token:
            msg = "Token endpoint did not issue a refresh token"
            raise TokenEndpointError(msg, fields=sorted(raw))
        return tokens

    async def refresh(self, refresh_token: str) -> OAuthTokenSet:
        """Mint a new access token from a refresh token.

        The returned set has an empty ``refresh_token`` when the
        endpoint did not rotate it; callers merge in the previous one.

        Parameters
        ----------
        refresh_token : str
            The refresh token.

        Returns
        -------
        OAuthTokenSet
            A token set with a fresh access token.

        Raises
        ------
        TokenEndpointError
            If the endpoint rejects the refresh.
        """
        logger.info("Refreshing access token")
        raw = await self._post_token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
            },
            operation="refresh",
        )
        return self._parse_tokens(raw, operation="refresh")

    async def _post_token_request(self, data: dict[str, str], operation: str) -> dict[str, Any]:
        """POST a form-encoded grant and return the decoded JSON body."""
        client = await self._get_client()
        try:
            resp = await client.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            msg = f"Token {operation} request failed: {exc}"
            raise TokenEndpointError(msg) from exc

        if not resp.is_success:
            logger.error(
                "Token %s failed - Status: %s, Response: %s",
                operation,
                resp.status_code,
                resp.text,
            )
            msg = f"Token {operation} failed with HTTP {resp.status_code}"
            raise TokenEndpointError(msg, status_code=resp.status_code, body=resp.text)

        try:
            raw = resp.json()
        except ValueError as exc:
            msg = f"Token {operation} returned a non-JSON body"
            raise TokenEndpointError(msg, status_code=resp.status_code, body=resp.text) from exc
        if not isinstance(raw, dict):
            msg = f"Token {operation} returned an unexpected body"
            raise TokenEndpointError(msg, status_code=resp.status_code, body=resp.text)
        return raw

    def _parse_tokens(self, raw: dict[str, Any], operation: str) -> OAuthTokenSet:
        """Convert a token endpoint response into an OAuthTokenSet."""
        try:
            access_token = raw["access_token"]
            expires_in = int(raw["expires_in"])
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"Invalid response from token endpoint during {operation}: {exc}"
            raise TokenEndpointError(msg, fields=sorted(raw)) from exc

        return OAuthTokenSet(
            access_token=access_token,
            refresh_token=raw.get("refresh_token") or "",
            expires_at=int(self._clock()) + expires_in,
            scope=raw.get("scope", ""),
        )
