"""Shared credential types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class OAuthTokenSet:
    """Spotify token set as persisted in the keyring.

    Attributes
    ----------
    access_token : str
        Short-lived bearer token for Web API requests.
    refresh_token : str
        Long-lived token used to mint new access tokens. Never empty
        once issued; refreshes that omit it keep the previous value.
    expires_at : int
        Unix timestamp (seconds) after which the access token is invalid.
    scope : str
        Space-separated list of granted scopes.
    """

    access_token: str
    refresh_token: str
    expires_at: int
    scope: str = ""

    def expires_within(self, seconds: int, now: float) -> bool:
        """Check whether the access token expires within ``seconds`` of ``now``."""
        return self.expires_at - seconds <= now

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON shape."""
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuthTokenSet:
        """Create a token set from its persisted JSON shape.

        Raises
        ------
        KeyError
            If a required field is missing.
        TypeError, ValueError
            If ``expiresAt`` is not numeric.
        """
        return cls(
            access_token=data["accessToken"],
            refresh_token=data["refreshToken"],
            expires_at=int(data["expiresAt"]),
            scope=data.get("scope", ""),
        )


@dataclass(frozen=True)
class AuthorizationAttemptState:
    """Binds a browser callback to the attempt that spawned it.

    Attributes
    ----------
    csrf_token : str
        Random ``state`` value round-tripped through the browser.
    redirect_uri : str
        The redirect URI actually bound (after any port fallback).
    listener_port : int
        The local port the callback listener is bound to.
    """

    csrf_token: str
    redirect_uri: str
    listener_port: int


class AuthFlowState(str, Enum):
    """State of the interactive authorization flow."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
