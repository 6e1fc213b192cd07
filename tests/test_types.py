"""Unit tests for shared credential types."""

from __future__ import annotations

import pytest

from spotify_mcp.types import AuthFlowState, OAuthTokenSet


class TestOAuthTokenSet:
    """Tests for OAuthTokenSet."""

    def test_to_dict_uses_persisted_keys(self) -> None:
        """to_dict produces the keyring JSON shape."""
        tokens = OAuthTokenSet("a", "r", 1000, "s")
        assert tokens.to_dict() == {
            "accessToken": "a",
            "refreshToken": "r",
            "expiresAt": 1000,
            "scope": "s",
        }

    def test_from_dict(self) -> None:
        """from_dict reads the persisted shape."""
        tokens = OAuthTokenSet.from_dict(
            {"accessToken": "a", "refreshToken": "r", "expiresAt": 1000, "scope": "s"}
        )
        assert tokens == OAuthTokenSet("a", "r", 1000, "s")

    def test_from_dict_scope_optional(self) -> None:
        """A missing scope defaults to an empty string."""
        tokens = OAuthTokenSet.from_dict({"accessToken": "a", "refreshToken": "r", "expiresAt": 5})
        assert tokens.scope == ""

    def test_from_dict_missing_field(self) -> None:
        """A missing required field raises KeyError."""
        with pytest.raises(KeyError):
            OAuthTokenSet.from_dict({"accessToken": "a", "expiresAt": 5})

    @pytest.mark.parametrize(
        ("expires_at", "now", "expected"),
        [
            (1030, 1000, True),
            (1060, 1000, True),
            (1061, 1000, False),
            (1120, 1000, False),
            (900, 1000, True),
        ],
    )
    def test_expires_within(self, expires_at: int, now: int, expected: bool) -> None:
        """Tokens inside the margin count as expiring."""
        tokens = OAuthTokenSet("a", "r", expires_at)
        assert tokens.expires_within(60, now) is expected

    def test_frozen(self) -> None:
        """Token sets are immutable."""
        tokens = OAuthTokenSet("a", "r", 1000)
        with pytest.raises(AttributeError):
            tokens.access_token = "b"  # type: ignore[misc]


class TestAuthFlowState:
    """Tests for AuthFlowState."""

    def test_values(self) -> None:
        """States compare equal to their string values."""
        assert AuthFlowState.PENDING == "pending"
        assert AuthFlowState.TIMED_OUT.value == "timed_out"
