"""Interactive OAuth2 authorization flow orchestrator.

Provides AuthFlowManager, which runs the complete PKCE authorization
code flow (local callback listener, system browser, code exchange,
persistence) and collapses concurrent requests into a single flow so
only one browser window and one listener exist at a time.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import secrets
import webbrowser

from typing import TYPE_CHECKING

from ..exceptions import AuthenticationError, AuthFlowTimeout, BrowserLaunchError
from ..types import AuthFlowState, AuthorizationAttemptState, OAuthTokenSet
from .callback_server import OAuthCallbackServer
from .pkce import PKCEChallenge, b64url


if TYPE_CHECKING:
    from collections.abc import Callable

    from .token_client import TokenEndpointClient
    from .token_store import TokenStore


logger = logging.getLogger("spotify_mcp.auth")


def open_system_browser(url: str) -> None:
    """Open ``url`` in the user's default browser.

    Raises
    ------
    BrowserLaunchError
        If no browser could be launched.
    """
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as exc:
        msg = f"Could not open browser: {exc}"
        raise BrowserLaunchError(msg) from exc
    if not opened:
        msg = "No runnable browser found to open the authorization URL"
        raise BrowserLaunchError(msg)


class AuthFlowManager:
    """Orchestrates the interactive authorization flow.

    ``run_flow`` is safe to call from many coroutines at once: while a
    flow is in progress every caller awaits the same task and observes
    the same result or failure. Once it settles the next call starts a
    fresh attempt.

    Parameters
    ----------
    token_client : TokenEndpointClient
        Builds the authorize URL and exchanges the code.
    token_store : TokenStore
        Store the resulting tokens are persisted to.
    account_key : str
        Key the tokens are stored under (the client ID).
    launch : callable, optional
        Opens the authorization URL. Defaults to the system browser.
    redirect_host : str
        Host of the local callback listener.
    redirect_port : int
        Preferred port of the local callback listener.
    callback_path : str
        Path of the redirect URI.
    callback_timeout : float, optional
        Seconds to wait for the redirect; ``None`` waits indefinitely.
    """

    def __init__(
        self,
        token_client: TokenEndpointClient,
        token_store: TokenStore,
        account_key: str,
        launch: Callable[[str], None] | None = None,
        redirect_host: str = "127.0.0.1",
        redirect_port: int = 5173,
        callback_path: str = "/callback",
        callback_timeout: float | None = None,
    ) -> None:
        """Initialize the auth flow manager."""
        self.token_client = token_client
        self.token_store = token_store
        self.account_key = account_key
        self.launch = launch or open_system_browser
        self.redirect_host = redirect_host
        self.redirect_port = redirect_port
        self.callback_path = callback_path
        self.callback_timeout = callback_timeout

        self._flow_state = AuthFlowState.PENDING
        self._flow_id: str | None = None
        self._attempt: AuthorizationAttemptState | None = None
        self._inflight: asyncio.Task[OAuthTokenSet] | None = None

    @property
    def flow_state(self) -> AuthFlowState:
        """Current state of the auth flow."""
        return self._flow_state

    @property
    def attempt(self) -> AuthorizationAttemptState | None:
        """The in-flight authorization attempt, if any."""
        return self._attempt

    @property
    def in_progress(self) -> bool:
        """Whether an interactive flow is currently running."""
        return self._inflight is not None

    async def run_flow(self) -> OAuthTokenSet:
        """Run the authorization flow, joining one already in progress.

        Returns
        -------
        OAuthTokenSet
            The freshly issued and persisted token set.

        Raises
        ------
        AuthenticationError
            If any step fails; every concurrent caller receives it.
        StoreError
            If the tokens could not be persisted.
        """
        if self._inflight is None:
            task = asyncio.ensure_future(self._perform_flow())
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        else:
            logger.info("Auth flow %s already in progress, waiting on it", self._flow_id)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task[OAuthTokenSet]) -> None:
        """Drop the in-flight marker once the flow settles."""
        if self._inflight is task:
            self._inflight = None
            self._attempt = None

    async def _perform_flow(self) -> OAuthTokenSet:
        """Run one complete authorization attempt."""
        self._flow_id = secrets.token_urlsafe(8)
        self._flow_state = AuthFlowState.IN_PROGRESS

        # 1. Generate PKCE + state
        pkce = PKCEChallenge.generate()
        state = b64url(secrets.token_bytes(16))

        # 2. Start callback server
        callback_server = OAuthCallbackServer(
            expected_state=state,
            host=self.redirect_host,
            port=self.redirect_port,
            callback_path=self.callback_path,
        )
        try:
            redirect_uri = await callback_server.start()
            self._attempt = AuthorizationAttemptState(
                csrf_token=state,
                redirect_uri=redirect_uri,
                listener_port=callback_server.port,
            )
            logger.info("Auth flow %s: callback server at %s", self._flow_id, redirect_uri)

            # 3. Build authorize URL and open the browser
            authorize_url = self.token_client.build_authorize_url(
                redirect_uri=redirect_uri,
                state=state,
                pkce=pkce,
            )
            logger.info("Open this URL to authenticate: %s", authorize_url)
            self.launch(authorize_url)

            # 4. Wait for the redirect
            try:
                code = await callback_server.wait_for_code(self.callback_timeout)
            except asyncio.TimeoutError:
                self._flow_state = AuthFlowState.TIMED_OUT
                msg = f"Authentication timed out after {self.callback_timeout}s"
                raise AuthFlowTimeout(  # noqa: TRY301
                    msg,
                    timeout=self.callback_timeout or 0.0,
                    flow_id=self._flow_id,
                ) from None

            # 5. Exchange code for tokens
            tokens = await self.token_client.exchange_code(
                code=code,
                verifier=pkce.verifier,
                redirect_uri=redirect_uri,
            )

            # 6. Persist
            await self.token_store.save(self.account_key, tokens)

        except AuthFlowTimeout:
            raise
        except AuthenticationError as exc:
            self._flow_state = AuthFlowState.FAILED
            if exc.flow_id is None:
                exc.flow_id = exc.context["flow_id"] = self._flow_id
            logger.error("Auth flow %s failed: %s", self._flow_id, exc)
            raise
        except Exception:
            self._flow_state = AuthFlowState.FAILED
            logger.exception("Auth flow %s failed", self._flow_id)
            raise
        finally:
            await callback_server.aclose()

        self._flow_state = AuthFlowState.COMPLETED
        logger.info("Auth flow %s completed successfully", self._flow_id)
        return tokens
