"""Pluggable token storage backends.

Provides the TokenStore ABC, the OS keyring store used for real
credentials, and an in-memory store for tests and throwaway sessions.
Entries are replaced wholesale, so readers always see a complete set.
"""

from __future__ import annotations

import asyncio
import json
import logging

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import keyring

from keyring.errors import KeyringError, PasswordDeleteError

from ..exceptions import StoreError
from ..types import OAuthTokenSet


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger("spotify_mcp.auth")

DEFAULT_SERVICE_NAME = "spotify-mcp"


class TokenStore(ABC):
    """Abstract base class for OAuth2 token storage.

    All methods are async so keyring backends that block on IPC
    (Secret Service, macOS Keychain) never stall the event loop.
    """

    @abstractmethod
    async def save(self, key: str, tokens: OAuthTokenSet) -> None:
        """Save tokens under the given key.

        Parameters
        ----------
        key : str
            Account identifier (the configured client ID).
        tokens : OAuthTokenSet
            The token set to persist.
        """

    @abstractmethod
    async def load(self, key: str) -> OAuthTokenSet | None:
        """Load tokens for the given key.

        Parameters
        ----------
        key : str
            Account identifier.

        Returns
        -------
        OAuthTokenSet or None
            The stored token set, or None if not found.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete tokens for the given key. Missing entries are ignored."""

    async def exists(self, key: str) -> bool:
        """Check if tokens exist for the given key."""
        return await self.load(key) is not None


def _serialize_tokens(tokens: OAuthTokenSet) -> str:
    """Serialize an OAuthTokenSet to JSON."""
    return json.dumps(tokens.to_dict())


def _deserialize_tokens(data: str, key: str | None = None) -> OAuthTokenSet:
    """Deserialize an OAuthTokenSet from JSON.

    Raises
    ------
    StoreError
        If the entry is not a valid token set.
    """
    try:
        obj = json.loads(data)
        return OAuthTokenSet.from_dict(obj)
    except (ValueError, KeyError, TypeError) as exc:
        msg = f"Stored credential entry is corrupt: {exc}"
        raise StoreError(msg, key=key) from exc


class MemoryTokenStore(TokenStore):
    """In-memory token store for tests and single-process use."""

    def __init__(self) -> None:
        """Initialize the memory token store."""
        self._tokens: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def save(self, key: str, tokens: OAuthTokenSet) -> None:
        """Save tokens in memory."""
        async with self._lock:
            self._tokens[key] = _serialize_tokens(tokens)

    async def load(self, key: str) -> OAuthTokenSet | None:
        """Load tokens from memory."""
        async with self._lock:
            data = self._tokens.get(key)
        if data is None:
            return None
        return _deserialize_tokens(data, key)

    async def delete(self, key: str) -> None:
        """Delete tokens from memory."""
        async with self._lock:
            self._tokens.pop(key, None)


class KeyringTokenStore(TokenStore):
    """OS keyring-backed token store.

    Each account key maps to one keyring entry under ``service_name``
    holding the JSON-encoded token set.

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "spotify-mcp").
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME) -> None:
        """Initialize the keyring token store."""
        self._service_name = service_name

    @property
    def service_name(self) -> str:
        """Keyring service name the entries are filed under."""
        return self._service_name

    async def _call(self, func: Callable[..., Any], *args: Any, key: str) -> Any:
        """Run a blocking keyring call in the default executor."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, self._service_name, *args)
        except PasswordDeleteError:
            raise
        except KeyringError as exc:
            msg = f"Secure credential storage unavailable: {exc}"
            raise StoreError(msg, key=key, service=self._service_name) from exc

    async def save(self, key: str, tokens: OAuthTokenSet) -> None:
        """Save tokens to the OS keyring."""
        await self._call(keyring.set_password, key, _serialize_tokens(tokens), key=key)
        logger.debug("Stored tokens for %s in keyring service %s", key, self._service_name)

    async def load(self, key: str) -> OAuthTokenSet | None:
        """Load tokens from the OS keyring."""
        data = await self._call(keyring.get_password, key, key=key)
        if data is None:
            return None
        return _deserialize_tokens(data, key)

    async def delete(self, key: str) -> None:
        """Delete tokens from the OS keyring."""
        try:
            await self._call(keyring.delete_password, key, key=key)
        except PasswordDeleteError:
            logger.debug("No keyring entry to delete for %s", key)


def get_token_store(backend: str = "keyring", **kwargs: Any) -> TokenStore:
    """Factory function for token stores.

    Parameters
    ----------
    backend : str
        Storage backend: "keyring" or "memory".
    **kwargs : Any
        Additional keyword arguments passed to the store constructor.

    Returns
    -------
    TokenStore
        A configured token store instance.
    """
    if backend == "keyring":
        return KeyringTokenStore(service_name=kwargs.get("service_name", DEFAULT_SERVICE_NAME))
    if backend == "memory":
        return MemoryTokenStore()
    msg = f"Unknown token store backend: {backend}"
    raise ValueError(msg)
