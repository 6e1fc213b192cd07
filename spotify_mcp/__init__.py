"""spotify-mcp - Spotify credentials and Web API access for MCP tools.

Provides a keyring-backed OAuth2 (PKCE) credential manager that runs the
browser authorization flow at most once at a time and refreshes tokens
before they expire, plus a thin Web API client that uses it.
"""

from __future__ import annotations

from .api import SpotifyApi, create_spotify_api
from .auth import (
    AuthFlowManager,
    CredentialManager,
    KeyringTokenStore,
    MemoryTokenStore,
    OAuthCallbackServer,
    PKCEChallenge,
    TokenEndpointClient,
    TokenStore,
    create_credential_manager,
)
from .config import Settings, clear_settings, get_settings, load_env_file
from .exceptions import (
    AuthenticationError,
    AuthorizationDenied,
    ConfigurationError,
    SpotifyApiError,
    SpotifyMCPException,
    StateMismatch,
    StoreError,
    TokenEndpointError,
    UpstreamAuthExpired,
)
from .types import AuthFlowState, OAuthTokenSet


__version__ = "0.1.0"

__all__ = [
    "AuthFlowManager",
    "AuthFlowState",
    "AuthenticationError",
    "AuthorizationDenied",
    "ConfigurationError",
    "CredentialManager",
    "KeyringTokenStore",
    "MemoryTokenStore",
    "OAuthCallbackServer",
    "OAuthTokenSet",
    "PKCEChallenge",
    "Settings",
    "SpotifyApi",
    "SpotifyApiError",
    "SpotifyMCPException",
    "StateMismatch",
    "StoreError",
    "TokenEndpointClient",
    "TokenEndpointError",
    "TokenStore",
    "UpstreamAuthExpired",
    "__version__",
    "clear_settings",
    "create_credential_manager",
    "create_spotify_api",
    "get_settings",
    "load_env_file",
]
