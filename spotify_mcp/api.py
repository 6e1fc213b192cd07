"""Thin Spotify Web API client.

Each call fetches tokens from the CredentialManager, attaches a bearer
header and, when the API answers 401, refreshes once and retries once.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any, Literal
from urllib.parse import quote

import httpx

from .exceptions import SpotifyApiError, UpstreamAuthExpired
from .log import mask_token


if TYPE_CHECKING:
    from .auth.credentials import CredentialManager
    from .config import Settings
    from .types import OAuthTokenSet


logger = logging.getLogger("spotify_mcp.api")

SPOTIFY_API_BASE = "https://api.spotify.com/v1"

SearchType = Literal["track", "album", "artist", "playlist"]


def _auth_header(tokens: OAuthTokenSet) -> dict[str, str]:
    return {"Authorization": f"Bearer {tokens.access_token}"}


def _drop_none(params: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None}


class SpotifyApi:
    """Spotify Web API wrapper bound to a CredentialManager.

    Parameters
    ----------
    credentials : CredentialManager
        Source of access tokens.
    base_url : str
        Web API base URL.
    http_client : httpx.AsyncClient, optional
        Client used for API calls. Created lazily when omitted.
    timeout : float
        Request timeout in seconds for the lazily created client.
    """

    def __init__(
        self,
        credentials: CredentialManager,
        base_url: str = SPOTIFY_API_BASE,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the API client."""
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
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

    async def _send(
        self,
        method: str,
        path: str,
        tokens: OAuthTokenSet,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        logger.debug("Making request to: %s %s", method, url)
        return await client.request(
            method,
            url,
            params=_drop_none(params or {}),
            json=json,
            headers=_auth_header(tokens),
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Send an authenticated request, refreshing once on 401.

        Returns
        -------
        Any
            The decoded JSON body, or None for empty (204) responses.

        Raises
        ------
        UpstreamAuthExpired
            If the API still answers 401 after a refresh.
        SpotifyApiError
            For any other non-success status.
        """
        tokens = await self.credentials.get_tokens()
        logger.debug("Got tokens, access token starts with: %s", mask_token(tokens.access_token))

        resp = await self._send(method, path, tokens, params=params, json=json)
        if resp.status_code == httpx.codes.UNAUTHORIZED:
            logger.info("Got 401 error, attempting to refresh token...")
            tokens = await self.credentials.refresh(tokens.refresh_token)
            logger.info("Token refreshed, retrying request...")
            resp = await self._send(method, path, tokens, params=params, json=json)
            if resp.status_code == httpx.codes.UNAUTHORIZED:
                msg = "Spotify rejected the refreshed access token"
                raise UpstreamAuthExpired(
                    msg,
                    status_code=resp.status_code,
                    body=resp.text,
                    method=method,
                    path=path,
                )

        if not resp.is_success:
            logger.error(
                "Request failed - Status: %s, Response: %s, URL: %s",
                resp.status_code,
                resp.text,
                resp.request.url,
            )
            msg = f"Spotify API request failed with HTTP {resp.status_code}"
            raise SpotifyApiError(
                msg,
                status_code=resp.status_code,
                body=resp.text,
                method=method,
                path=path,
            )

        if resp.status_code == httpx.codes.NO_CONTENT or not resp.content:
            return None
        return resp.json()

    async def search(self, query: str, type: SearchType = "track", limit: int = 10) -> Any:  # noqa: A002
        """Search the catalog."""
        return await self._request("GET", "/search", params={"q": query, "type": type, "limit": limit})

    async def get_user_playlists(self, limit: int = 20, offset: int = 0) -> Any:
        """List the current user's playlists."""
        return await self._request("GET", "/me/playlists", params={"limit": limit, "offset": offset})

    async def get_playlist_items(self, playlist_id: str, limit: int = 50, offset: int = 0) -> Any:
        """List the items of a playlist."""
        return await self._request(
            "GET",
            f"/playlists/{quote(playlist_id, safe='')}/tracks",
            params={"limit": limit, "offset": offset},
        )

    async def get_devices(self) -> Any:
        """List the user's available playback devices."""
        return await self._request("GET", "/me/player/devices")

    async def get_current_playback(self) -> Any | None:
        """Get the playback state, or None when nothing is playing."""
        return await self._request("GET", "/me/player")

    async def play(
        self,
        device_id: str | None = None,
        uris: list[str] | None = None,
        context_uri: str | None = None,
        position_ms: int | None = None,
    ) -> None:
        """Start or resume playback."""
        body = _drop_none({"uris": uris, "context_uri": context_uri, "position_ms": position_ms})
        await self._request(
            "PUT",
            "/me/player/play",
            params={"device_id": device_id},
            json=body or None,
        )

    async def pause(self, device_id: str | None = None) -> None:
        """Pause playback."""
        await self._request("PUT", "/me/player/pause", params={"device_id": device_id})

    async def next_track(self, device_id: str | None = None) -> None:
        """Skip to the next track."""
        await self._request("POST", "/me/player/next", params={"device_id": device_id})

    async def previous_track(self, device_id: str | None = None) -> None:
        """Skip to the previous track."""
        await self._request("POST", "/me/player/previous", params={"device_id": device_id})


def create_spotify_api(
    credentials: CredentialManager,
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> SpotifyApi:
    """Build a SpotifyApi from settings.

    Parameters
    ----------
    credentials : CredentialManager
        Source of access tokens, usually from ``create_credential_manager``.
    settings : Settings, optional
        Resolved settings (defaults to ``get_settings()``).
    http_client : httpx.AsyncClient, optional
        HTTP client for Web API calls.

    Returns
    -------
    SpotifyApi
        A client using ``settings.api.base_url`` and ``settings.api.timeout``.
    """
    if settings is None:
        from .config import get_settings

        settings = get_settings()

    return SpotifyApi(
        credentials,
        base_url=settings.api.base_url,
        http_client=http_client,
        timeout=settings.api.timeout,
    )
