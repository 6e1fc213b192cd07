"""Unit tests for PKCE challenge generation."""

from __future__ import annotations

import hashlib
import re

from base64 import urlsafe_b64encode

from spotify_mcp.auth.pkce import PKCEChallenge, b64url


_B64URL = re.compile(r"^[A-Za-z0-9_-]+$")


class TestPKCEChallenge:
    """Tests for PKCEChallenge.generate."""

    def test_method_is_s256(self) -> None:
        """Generated challenges use S256."""
        assert PKCEChallenge.generate().method == "S256"

    def test_verifier_is_base64url_without_padding(self) -> None:
        """Verifier only contains base64url characters."""
        pkce = PKCEChallenge.generate()
        assert _B64URL.match(pkce.verifier)
        assert "=" not in pkce.verifier

    def test_verifier_length_in_rfc_range(self) -> None:
        """64 random bytes encode to 86 characters (RFC 7636: 43-128)."""
        pkce = PKCEChallenge.generate()
        assert len(pkce.verifier) == 86
        assert 43 <= len(pkce.verifier) <= 128

    def test_challenge_is_sha256_of_verifier(self) -> None:
        """challenge == base64url(sha256(verifier)) without padding."""
        pkce = PKCEChallenge.generate()
        digest = hashlib.sha256(pkce.verifier.encode("ascii")).digest()
        expected = urlsafe_b64encode(digest).decode("ascii").rstrip("=")
        assert pkce.challenge == expected
        assert len(pkce.challenge) == 43
        assert _B64URL.match(pkce.challenge)

    def test_generations_are_unique(self) -> None:
        """Each generation yields a fresh verifier."""
        verifiers = {PKCEChallenge.generate().verifier for _ in range(50)}
        assert len(verifiers) == 50

    def test_custom_length(self) -> None:
        """The number of random bytes is configurable."""
        pkce = PKCEChallenge.generate(length=32)
        assert len(pkce.verifier) == 43


class TestB64Url:
    """Tests for the base64url helper."""

    def test_strips_padding(self) -> None:
        """Padding is removed."""
        assert b64url(b"a") == "YQ"

    def test_uses_url_safe_alphabet(self) -> None:
        """'+' and '/' are replaced by '-' and '_'."""
        assert b64url(b"\xfb\xff") == "-_8"
