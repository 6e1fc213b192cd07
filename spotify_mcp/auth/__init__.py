"""Spotify OAuth2 credential management.

Provides PKCE generation, secure token storage, the token endpoint
client, the one-shot callback listener, the single-flight authorization
flow and the CredentialManager that ties them together.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .callback_server import OAuthCallbackServer
from .credentials import CredentialManager
from .flow import AuthFlowManager, open_system_browser
from .pkce import PKCEChallenge
from .token_client import DEFAULT_SCOPES, TokenEndpointClient
from .token_store import (
    KeyringTokenStore,
    MemoryTokenStore,
    TokenStore,
    get_token_store,
)


if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from ..config import Settings


def create_credential_manager(
    settings: Settings | None = None,
    *,
    launch: Callable[[str], None] | None = None,
    http_client: httpx.AsyncClient | None = None,
    token_store: TokenStore | None = None,
    clock: Callable[[], float] | None = None,
) -> CredentialManager:
    """Build a CredentialManager from settings.

    Parameters
    ----------
    settings : Settings, optional
        Resolved settings (defaults to ``get_settings()``).
    launch : callable, optional
        Browser launcher for the interactive flow.
    http_client : httpx.AsyncClient, optional
        HTTP client for the token endpoint.
    token_store : TokenStore, optional
        Overrides the store selected by ``settings.store``.
    clock : callable, optional
        Returns the current Unix time.

    Returns
    -------
    CredentialManager
        A manager ready to serve tokens.
    """
    if settings is None:
        from ..config import get_settings

        settings = get_settings()

    oauth = settings.oauth
    store = token_store or get_token_store(
        settings.store.backend,
        service_name=settings.store.service_name,
    )
    token_client = TokenEndpointClient(
        client_id=oauth.client_id,
        scopes=oauth.scopes,
        authorize_url=oauth.authorize_url,
        token_url=oauth.token_url,
        http_client=http_client,
        timeout=oauth.http_timeout,
        clock=clock,
    )
    flow = AuthFlowManager(
        token_client=token_client,
        token_store=store,
        account_key=oauth.client_id,
        launch=launch,
        redirect_host=oauth.redirect_host,
        redirect_port=oauth.redirect_port,
        callback_path=oauth.callback_path,
        callback_timeout=oauth.callback_timeout,
    )
    return CredentialManager(
        client_id=oauth.client_id,
        token_store=store,
        token_client=token_client,
        flow=flow,
        expiry_margin=oauth.expiry_margin,
        clock=clock,
    )


__all__ = [
    "DEFAULT_SCOPES",
    "AuthFlowManager",
    "CredentialManager",
    "KeyringTokenStore",
    "MemoryTokenStore",
    "OAuthCallbackServer",
    "PKCEChallenge",
    "TokenEndpointClient",
    "TokenStore",
    "create_credential_manager",
    "get_token_store",
    "open_system_browser",
]
