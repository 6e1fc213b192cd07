"""Shared pytest fixtures for spotify-mcp tests."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os
import threading

from collections.abc import Callable, Iterator
from typing import Any
from urllib.error import HTTPError
from urllib.parse import parse_qs, urlencode, urlparse
from urllib.request import ProxyHandler, build_opener

import httpx
import pytest

from spotify_mcp.config import clear_settings
from spotify_mcp.types import OAuthTokenSet


NOW = 1_700_000_000


class FakeClock:
    """Settable replacement for ``time.time``."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def token_response(
    access_token: str = "at_new",
    refresh_token: str | None = "rt_new",
    expires_in: int = 3600,
    scope: str = "user-read-playback-state",
) -> dict[str, Any]:
    """Build a token endpoint JSON body."""
    body: dict[str, Any] = {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": expires_in,
        "scope": scope,
    }
    if refresh_token is not None:
        body["refresh_token"] = refresh_token
    return body


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """Create an AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Remove SPOTIFY_* variables and reset cached settings."""
    for name in list(os.environ):
        if name.startswith("SPOTIFY_"):
            monkeypatch.delenv(name, raising=False)
    clear_settings()
    yield
    # dotenv writes straight to os.environ
    for name in list(os.environ):
        if name.startswith("SPOTIFY_"):
            del os.environ[name]
    clear_settings()


@pytest.fixture()
def clock() -> FakeClock:
    """A fake clock frozen at NOW."""
    return FakeClock()


@pytest.fixture()
def sample_tokens() -> OAuthTokenSet:
    """A token set valid for another hour."""
    return OAuthTokenSet(
        access_token="at_test_123",
        refresh_token="rt_test_456",
        expires_at=NOW + 3600,
        scope="user-read-playback-state playlist-read-private",
    )


_opener = build_opener(ProxyHandler({}))


def http_get(url: str) -> tuple[int, str]:
    """GET ``url`` without proxies and return (status, body), including error statuses."""
    try:
        with _opener.open(url, timeout=5) as resp:
            return resp.status, resp.read().decode("utf-8")
    except HTTPError as e:
        return e.code, e.read().decode("utf-8")


class FakeBrowser:
    """Stand-in for the system browser.

    Records every authorization URL. Unless ``manual`` is set it plays
    the user's part by hitting the redirect URI from a thread with a
    code and the round-tripped state; ``overrides`` replace (or, when
    None, drop) query parameters of that redirect.
    """

    def __init__(self, manual: bool = False, **overrides: str | None) -> None:
        self.manual = manual
        self.overrides = overrides
        self.urls: list[str] = []
        self.responses: list[tuple[int, str]] = []

    def __call__(self, url: str) -> None:
        self.urls.append(url)
        if not self.manual:
            self.redirect(url)

    def redirect(self, url: str | None = None) -> None:
        """Send the redirect for ``url`` (default: the latest URL)."""
        params = {k: v[0] for k, v in parse_qs(urlparse(url or self.urls[-1]).query).items()}
        query: dict[str, str | None] = {"code": "the-code", "state": params["state"]}
        query.update(self.overrides)
        target = f"{params['redirect_uri']}?{urlencode({k: v for k, v in query.items() if v})}"
        threading.Thread(
            target=lambda: self.responses.append(http_get(target)),
            daemon=True,
        ).start()
