"""PKCE verifier/challenge pairs for the Spotify authorization request.

Spotify requires S256 for public clients, so no ``plain`` method is offered.
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass


def b64url(data: bytes) -> str:
    """Encode bytes as base64url without padding."""
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEChallenge:
    """Secret verifier and its S256 challenge for one authorization attempt.

    Attributes
    ----------
    verifier : str
        Kept locally and sent only to the token endpoint.
    challenge : str
        ``base64url(sha256(verifier))``, sent with the authorize request.
    method : str
        Always ``"S256"``.
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 64) -> PKCEChallenge:
        """Create a fresh pair from ``length`` random bytes.

        Parameters
        ----------
        length : int
            Random bytes behind the verifier. The default 64 encodes to
            86 characters, inside the 43-128 range RFC 7636 allows.

        Returns
        -------
        PKCEChallenge
            A new, unused pair.
        """
        verifier = b64url(secrets.token_bytes(length))
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        return cls(verifier=verifier, challenge=b64url(digest))
