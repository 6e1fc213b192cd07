"""Integration tests for the interactive authorization flow.

These run the real callback listener on localhost; the browser is
replaced by FakeBrowser and the token endpoint by httpx.MockTransport.
"""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import socket

from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from spotify_mcp.auth.credentials import CredentialManager
from spotify_mcp.auth.flow import AuthFlowManager, open_system_browser
from spotify_mcp.auth.token_client import TokenEndpointClient
from spotify_mcp.auth.token_store import MemoryTokenStore
from spotify_mcp.exceptions import (
    AuthFlowTimeout,
    AuthorizationDenied,
    BrowserLaunchError,
    StateMismatch,
    StoreError,
    TokenEndpointError,
)
from spotify_mcp.types import AuthFlowState, OAuthTokenSet
from tests.conftest import NOW, FakeBrowser, FakeClock, mock_client, token_response


ACCOUNT = "client-id"


class FakeTokenEndpoint:
    """Records token requests and answers with a fixed response."""

    def __init__(self, status: int = 200, body: dict[str, Any] | None = None) -> None:
        self.status = status
        self.body = body if body is not None else token_response()
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.body)

    def form(self, index: int = -1) -> dict[str, str]:
        """Decoded form body of a recorded request."""
        return {k: v[0] for k, v in parse_qs(self.requests[index].content.decode()).items()}


class FailingStore(MemoryTokenStore):
    """A store whose writes always fail."""

    async def save(self, key: str, tokens: OAuthTokenSet) -> None:
        raise StoreError("keyring locked", key=key)


def _make_flow(
    browser: FakeBrowser,
    endpoint: FakeTokenEndpoint | None = None,
    store: MemoryTokenStore | None = None,
    **kwargs: Any,
) -> AuthFlowManager:
    client = TokenEndpointClient(
        client_id=ACCOUNT,
        http_client=mock_client(endpoint or FakeTokenEndpoint()),
        clock=FakeClock(),
    )
    kwargs.setdefault("redirect_port", 0)
    return AuthFlowManager(
        token_client=client,
        token_store=store if store is not None else MemoryTokenStore(),
        account_key=ACCOUNT,
        launch=browser,
        **kwargs,
    )


async def _wait_for_launch(browser: FakeBrowser, count: int = 1) -> None:
    while len(browser.urls) < count:
        await asyncio.sleep(0.01)


# ── Happy path ──────────────────────────────────────────────────────


class TestAuthFlow:
    """End-to-end tests for AuthFlowManager.run_flow."""

    @pytest.mark.asyncio
    async def test_flow_persists_and_returns_tokens(self) -> None:
        """A successful flow exchanges the code and stores the result."""
        browser = FakeBrowser()
        endpoint = FakeTokenEndpoint()
        store = MemoryTokenStore()
        flow = _make_flow(browser, endpoint, store)

        tokens = await flow.run_flow()

        assert tokens == OAuthTokenSet("at_new", "rt_new", NOW + 3600, "user-read-playback-state")
        assert await store.load(ACCOUNT) == tokens
        assert flow.flow_state is AuthFlowState.COMPLETED
        assert flow.in_progress is False

    @pytest.mark.asyncio
    async def test_exchange_uses_attempt_verifier_and_redirect(self) -> None:
        """The exchange sends the code, the redirect URI and the attempt's verifier."""
        browser = FakeBrowser()
        endpoint = FakeTokenEndpoint()
        flow = _make_flow(browser, endpoint)

        await flow.run_flow()

        authorize = {k: v[0] for k, v in parse_qs(urlparse(browser.urls[0]).query).items()}
        form = endpoint.form()
        assert form["code"] == "the-code"
        assert form["redirect_uri"] == authorize["redirect_uri"]
        assert authorize["code_challenge_method"] == "S256"
        assert form["code_verifier"]
        assert form["code_verifier"] != authorize["code_challenge"]

    @pytest.mark.asyncio
    async def test_success_page_served(self) -> None:
        """The browser receives the success page."""
        browser = FakeBrowser()
        await _make_flow(browser).run_flow()
        while not browser.responses:
            await asyncio.sleep(0.01)
        status, body = browser.responses[0]
        assert status == 200
        assert "You can close this window" in body

    @pytest.mark.asyncio
    async def test_listener_released_after_flow(self) -> None:
        """The listener port is free again once the flow settles."""
        browser = FakeBrowser()
        flow = _make_flow(browser)
        await flow.run_flow()

        port = urlparse(
            parse_qs(urlparse(browser.urls[0]).query)["redirect_uri"][0]
        ).port
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        # the real listener also binds with SO_REUSEADDR; TIME_WAIT is expected
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("127.0.0.1", port))
        finally:
            sock.close()


# ── Single flight ───────────────────────────────────────────────────


class TestSingleFlight:
    """Tests for collapsing concurrent flows into one."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_flow(self) -> None:
        """N concurrent callers cause one browser launch and one exchange."""
        browser = FakeBrowser()
        endpoint = FakeTokenEndpoint()
        flow = _make_flow(browser, endpoint)

        results = await asyncio.gather(*(flow.run_flow() for _ in range(5)))

        assert len(browser.urls) == 1
        assert len(endpoint.requests) == 1
        assert all(r == results[0] for r in results)

    @pytest.mark.asyncio
    async def test_in_progress_while_waiting(self) -> None:
        """in_progress and attempt are set only while the flow runs."""
        browser = FakeBrowser(manual=True)
        flow = _make_flow(browser)

        task = asyncio.ensure_future(flow.run_flow())
        await _wait_for_launch(browser)
        assert flow.in_progress is True
        assert flow.flow_state is AuthFlowState.IN_PROGRESS
        attempt = flow.attempt
        assert attempt is not None
        assert attempt.redirect_uri.endswith(f":{attempt.listener_port}/callback")
        assert f"state={attempt.csrf_token}" in browser.urls[0]

        browser.redirect()
        await task
        assert flow.in_progress is False
        assert flow.attempt is None

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_flow(self) -> None:
        """Cancelling one caller leaves the shared flow running for the others."""
        browser = FakeBrowser(manual=True)
        flow = _make_flow(browser)

        first = asyncio.ensure_future(flow.run_flow())
        await _wait_for_launch(browser)
        second = asyncio.ensure_future(flow.run_flow())
        await asyncio.sleep(0)
        first.cancel()

        browser.redirect()
        tokens = await second
        assert tokens.access_token == "at_new"
        assert first.cancelled()
        assert len(browser.urls) == 1

    @pytest.mark.asyncio
    async def test_new_flow_after_completion(self) -> None:
        """Once a flow settles the next call starts a fresh attempt."""
        browser = FakeBrowser()
        flow = _make_flow(browser)

        await flow.run_flow()
        await flow.run_flow()

        assert len(browser.urls) == 2
        first = parse_qs(urlparse(browser.urls[0]).query)["state"]
        second = parse_qs(urlparse(browser.urls[1]).query)["state"]
        assert first != second


# ── Failures ────────────────────────────────────────────────────────


class TestFlowFailures:
    """Tests for failing flows."""

    @pytest.mark.asyncio
    async def test_state_mismatch_persists_nothing(self) -> None:
        """A forged state fails every waiter, skips the exchange and stores nothing."""
        browser = FakeBrowser(state="forged")
        endpoint = FakeTokenEndpoint()
        store = MemoryTokenStore()
        flow = _make_flow(browser, endpoint, store)

        results = await asyncio.gather(
            flow.run_flow(), flow.run_flow(), return_exceptions=True
        )

        assert all(isinstance(r, StateMismatch) for r in results)
        assert results[0].flow_id is not None
        assert endpoint.requests == []
        assert await store.load(ACCOUNT) is None
        assert flow.flow_state is AuthFlowState.FAILED

    @pytest.mark.asyncio
    async def test_access_denied_skips_exchange(self) -> None:
        """A denied consent raises AuthorizationDenied without calling the token endpoint."""
        browser = FakeBrowser(error="access_denied", code=None)
        endpoint = FakeTokenEndpoint()
        flow = _make_flow(browser, endpoint)

        with pytest.raises(AuthorizationDenied) as exc_info:
            await flow.run_flow()

        assert exc_info.value.error == "access_denied"
        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_failure_clears_inflight_marker(self) -> None:
        """After a failure a new call starts a new attempt."""
        browser = FakeBrowser(error="access_denied", code=None)
        flow = _make_flow(browser)

        with pytest.raises(AuthorizationDenied):
            await flow.run_flow()
        assert flow.in_progress is False

        browser.overrides = {}
        tokens = await flow.run_flow()
        assert tokens.access_token == "at_new"
        assert len(browser.urls) == 2

    @pytest.mark.asyncio
    async def test_token_endpoint_rejection(self) -> None:
        """An exchange rejected by the endpoint fails the flow and stores nothing."""
        browser = FakeBrowser()
        endpoint = FakeTokenEndpoint(status=400, body={"error": "invalid_grant"})
        store = MemoryTokenStore()
        flow = _make_flow(browser, endpoint, store)

        with pytest.raises(TokenEndpointError) as exc_info:
            await flow.run_flow()

        assert exc_info.value.status_code == 400
        assert await store.load(ACCOUNT) is None

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self) -> None:
        """A keyring write failure fails the flow."""
        flow = _make_flow(FakeBrowser(), store=FailingStore())

        with pytest.raises(StoreError):
            await flow.run_flow()
        assert flow.flow_state is AuthFlowState.FAILED
        assert flow.in_progress is False

    @pytest.mark.asyncio
    async def test_browser_launch_failure(self) -> None:
        """A launcher failure surfaces as BrowserLaunchError."""

        def broken_launch(url: str) -> None:
            raise BrowserLaunchError("no browser")

        client = TokenEndpointClient(client_id=ACCOUNT, http_client=mock_client(FakeTokenEndpoint()))
        flow = AuthFlowManager(
            token_client=client,
            token_store=MemoryTokenStore(),
            account_key=ACCOUNT,
            launch=broken_launch,
            redirect_port=0,
        )

        with pytest.raises(BrowserLaunchError):
            await flow.run_flow()
        assert flow.in_progress is False

    @pytest.mark.asyncio
    async def test_configured_timeout(self) -> None:
        """With a callback timeout, an unanswered flow raises AuthFlowTimeout."""
        browser = FakeBrowser(manual=True)
        flow = _make_flow(browser, callback_timeout=0.2)

        with pytest.raises(AuthFlowTimeout) as exc_info:
            await flow.run_flow()

        assert exc_info.value.timeout == 0.2
        assert flow.flow_state is AuthFlowState.TIMED_OUT
        assert flow.in_progress is False


# ── Idle connections ────────────────────────────────────────────────


class TestIdleConnections:
    """Flows with a connection that opens and sends nothing, like a browser preconnect."""

    @pytest.mark.asyncio
    async def test_redirect_completes_despite_idle_socket(self) -> None:
        """The redirect is handled while another connection sits idle."""
        browser = FakeBrowser(manual=True)
        store = MemoryTokenStore()
        flow = _make_flow(browser, store=store, callback_timeout=5)

        task = asyncio.ensure_future(flow.run_flow())
        await _wait_for_launch(browser)
        assert flow.attempt is not None
        idle = socket.create_connection(("127.0.0.1", flow.attempt.listener_port))
        try:
            browser.redirect()
            tokens = await asyncio.wait_for(task, 10)
        finally:
            idle.close()

        assert tokens.access_token == "at_new"
        assert await store.load(ACCOUNT) == tokens
        assert flow.flow_state is AuthFlowState.COMPLETED

    @pytest.mark.asyncio
    async def test_timeout_surfaces_promptly_with_idle_socket(self) -> None:
        """AuthFlowTimeout is raised on time even while a connection is held open."""
        browser = FakeBrowser(manual=True)
        flow = _make_flow(browser, callback_timeout=0.5)
        loop = asyncio.get_running_loop()

        task = asyncio.ensure_future(flow.run_flow())
        await _wait_for_launch(browser)
        assert flow.attempt is not None
        idle = socket.create_connection(("127.0.0.1", flow.attempt.listener_port))
        started = loop.time()
        try:
            with pytest.raises(AuthFlowTimeout):
                await asyncio.wait_for(task, 8)
            elapsed = loop.time() - started
        finally:
            idle.close()

        assert elapsed < 5
        assert flow.flow_state is AuthFlowState.TIMED_OUT
        assert flow.in_progress is False


# ── Redirect port ───────────────────────────────────────────────────


class TestRedirectPort:
    """Tests for the redirect URI when the preferred port is taken."""

    @pytest.mark.asyncio
    async def test_fallback_port_used_in_redirect_uri(self) -> None:
        """The authorize URL and the exchange both use the actually bound port."""
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        taken = blocker.getsockname()[1]
        try:
            browser = FakeBrowser()
            endpoint = FakeTokenEndpoint()
            flow = _make_flow(browser, endpoint, redirect_port=taken)
            await flow.run_flow()
        finally:
            blocker.close()

        redirect_uri = parse_qs(urlparse(browser.urls[0]).query)["redirect_uri"][0]
        port = urlparse(redirect_uri).port
        assert port != taken
        assert endpoint.form()["redirect_uri"] == redirect_uri


# ── Browser launcher ────────────────────────────────────────────────


class TestOpenSystemBrowser:
    """Tests for the default browser launcher."""

    def test_opens_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The URL is passed to webbrowser.open."""
        opened: list[str] = []
        monkeypatch.setattr("webbrowser.open", lambda url: opened.append(url) or True)
        open_system_browser("https://example.test/auth")
        assert opened == ["https://example.test/auth"]

    def test_no_browser(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """webbrowser.open returning False raises BrowserLaunchError."""
        monkeypatch.setattr("webbrowser.open", lambda url: False)
        with pytest.raises(BrowserLaunchError):
            open_system_browser("https://example.test/auth")


# ── Through the credential manager ──────────────────────────────────


class TestCredentialManagerFlow:
    """Tests for get_tokens driving the real flow."""

    @pytest.mark.asyncio
    async def test_concurrent_get_tokens_launch_once(self) -> None:
        """With an empty store, N concurrent get_tokens calls share one attempt."""
        browser = FakeBrowser()
        endpoint = FakeTokenEndpoint()
        store = MemoryTokenStore()
        flow = _make_flow(browser, endpoint, store)
        manager = CredentialManager(
            client_id=ACCOUNT,
            token_store=store,
            token_client=flow.token_client,
            flow=flow,
            clock=FakeClock(),
        )

        results = await asyncio.gather(*(manager.get_tokens() for _ in range(8)))

        assert len(browser.urls) == 1
        assert len(endpoint.requests) == 1
        assert {r.access_token for r in results} == {"at_new"}

        # the persisted set now satisfies later calls without another flow
        assert (await manager.get_tokens()).access_token == "at_new"
        assert len(browser.urls) == 1
