"""Credential manager serving valid Spotify tokens on demand.

CredentialManager is the entry point used by the Web API client: it
returns the stored token set while it is fresh, refreshes it when it is
about to expire, and falls back to the interactive authorization flow
when nothing is stored yet.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import dataclasses
import logging
import time

from typing import TYPE_CHECKING, Any

from ..exceptions import ConfigurationError, StoreError


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..types import OAuthTokenSet
    from .flow import AuthFlowManager
    from .token_client import TokenEndpointClient
    from .token_store import TokenStore


logger = logging.getLogger("spotify_mcp.auth")

DEFAULT_EXPIRY_MARGIN = 60


class CredentialManager:
    """Serves access tokens, refreshing or re-authorizing as needed.

    Parameters
    ----------
    client_id : str
        The configured client ID; also the keyring account key.
    token_store : TokenStore
        Secure store holding the token set.
    token_client : TokenEndpointClient
        Client for the refresh exchange.
    flow : AuthFlowManager
        Single-flight interactive authorization flow.
    expiry_margin : int
        Tokens expiring within this many seconds are refreshed (default ``60``).
    clock : callable, optional
        Returns the current Unix time.
    """

    def __init__(
        self,
        client_id: str,
        token_store: TokenStore,
        token_client: TokenEndpointClient,
        flow: AuthFlowManager,
        expiry_margin: int = DEFAULT_EXPIRY_MARGIN,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the credential manager."""
        self.client_id = client_id
        self.token_store = token_store
        self.token_client = token_client
        self.flow = flow
        self.expiry_margin = expiry_margin
        self._clock = clock or time.time

    @property
    def account_key(self) -> str:
        """Key the token set is stored under."""
        return self.client_id

    def _require_client_id(self) -> None:
        if not self.client_id:
            logger.error("SPOTIFY_CLIENT_ID is not set")
            msg = "SPOTIFY_CLIENT_ID is required. Set it in your environment or .env file."
            raise ConfigurationError(msg)

    async def get_tokens(self) -> OAuthTokenSet:
        """Get a valid token set.

        Returns
        -------
        OAuthTokenSet
            The stored set if it is not about to expire, otherwise a
            refreshed set, or a new set from the interactive flow when
            nothing is stored.

        Raises
        ------
        ConfigurationError
            If no client ID is configured.
        StoreError
            If the secure store is unavailable or its entry is corrupt.
        AuthenticationError
            If the refresh or the interactive flow fails.
        """
        self._require_client_id()

        tokens = await self.token_store.load(self.account_key)
        if tokens is None:
            logger.info("No stored tokens, starting auth flow")
            return await self.flow.run_flow()

        now = self._clock()
        expires_in = tokens.expires_at - int(now)
        if tokens.expires_within(self.expiry_margin, now):
            logger.info("Token expires in %s seconds, refreshing", expires_in)
            return await self.refresh(tokens.refresh_token)

        logger.debug("Using stored token (expires in %s seconds)", expires_in)
        return tokens

    async def refresh(self, refresh_token: str) -> OAuthTokenSet:
        """Refresh the access token and persist the new set.

        Concurrent refreshes are not serialized; the last save wins.

        Parameters
        ----------
        refresh_token : str
            The refresh token to redeem.

        Returns
        -------
        OAuthTokenSet
            The refreshed token set, keeping the previous refresh token
            when the endpoint did not issue a new one.

        Raises
        ------
        ConfigurationError
            If no client ID is configured.
        TokenEndpointError
            If the token endpoint rejects the refresh.
        StoreError
            If the new set could not be persisted.
        """
        self._require_client_id()

        try:
            tokens = await self.token_client.refresh(refresh_token)
        except Exception:
            logger.exception("Token refresh failed")
            raise

        if not tokens.refresh_token:
            previous = await self.token_store.load(self.account_key)
            kept = previous.refresh_token if previous else refresh_token
            tokens = dataclasses.replace(tokens, refresh_token=kept)

        await self.token_store.save(self.account_key, tokens)
        logger.info(
            "Token refreshed successfully, expires in %s seconds",
            tokens.expires_at - int(self._clock()),
        )
        return tokens

    async def get_access_token(self) -> str:
        """Get a valid access token string."""
        return (await self.get_tokens()).access_token

    async def authorization_header(self) -> dict[str, str]:
        """Get an ``Authorization`` header dict for Web API requests."""
        return {"Authorization": f"Bearer {await self.get_access_token()}"}

    async def status(self) -> dict[str, Any]:
        """Get current authorization status for diagnostics.

        Never starts a flow or a refresh.

        Returns
        -------
        dict[str, Any]
            ``authorized`` plus, when tokens are stored, ``expired``,
            ``expires_at``, ``expires_in_seconds`` and ``scope``.
        """
        self._require_client_id()

        tokens = await self.token_store.load(self.account_key)
        if tokens is None:
            return {"authorized": False, "message": "No tokens stored"}

        expires_in = tokens.expires_at - int(self._clock())
        return {
            "authorized": True,
            "expired": expires_in <= 0,
            "expires_at": tokens.expires_at,
            "expires_in_seconds": max(0, expires_in),
            "scope": tokens.scope,
            "flow_state": self.flow.flow_state.value,
        }

    async def logout(self) -> bool:
        """Delete the stored token set.

        Returns
        -------
        bool
            True if an entry was stored before the call.
        """
        self._require_client_id()

        try:
            existed = await self.token_store.exists(self.account_key)
        except StoreError:
            # corrupt entries are still removed
            existed = True
        await self.token_store.delete(self.account_key)
        logger.info("Stored tokens removed")
        return existed

    async def aclose(self) -> None:
        """Release the token client's HTTP resources."""
        await self.token_client.close()
