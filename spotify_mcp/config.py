"""Configuration system for spotify-mcp using pydantic-settings.

Settings are resolved once, from (lowest priority first):
1. Built-in defaults
2. A dotenv file (``SPOTIFY_MCP_ENV_FILE`` or ``./.env``), see ``load_env_file``
3. Environment variables

The OAuth section keeps the historical variable names
(``SPOTIFY_CLIENT_ID``, ``SPOTIFY_REDIRECT_PORT``); the other sections
use a nested ``SPOTIFY_<SECTION>__`` prefix.
"""

from __future__ import annotations

import logging
import os

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

from dotenv import load_dotenv
from pydantic import Field, PositiveFloat, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .auth.token_client import DEFAULT_SCOPES, SPOTIFY_AUTHORIZE_URL, SPOTIFY_TOKEN_URL
from .auth.token_store import DEFAULT_SERVICE_NAME


logger = logging.getLogger("spotify_mcp")

ENV_FILE_VARIABLE = "SPOTIFY_MCP_ENV_FILE"

_SENSITIVE_FIELDS: set[str] = {
    "client_id",
}

_REDACTED = "********"


class OAuthSettings(BaseSettings):
    """Spotify OAuth2 (PKCE) settings.

    Environment prefix: SPOTIFY_
    Example: SPOTIFY_CLIENT_ID=your-client-id
    Example: SPOTIFY_REDIRECT_PORT=5173
    """

    model_config = SettingsConfigDict(
        env_prefix="SPOTIFY_",
        extra="ignore",
    )

    client_id: str = Field(
        default="",
        description="Client ID of the Spotify application (public PKCE client)",
    )
    redirect_host: str = Field(
        default="127.0.0.1",
        description="Host of the local redirect listener",
    )
    redirect_port: int = Field(
        default=5173,
        ge=0,
        le=65535,
        description="Preferred redirect port; an ephemeral port is used if it is taken",
    )
    callback_path: str = Field(
        default="/callback",
        description="Path component of the redirect URI",
    )
    scopes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_SCOPES),
        description="Scopes to request (comma separated in the environment)",
    )
    authorize_url: str = SPOTIFY_AUTHORIZE_URL
    token_url: str = SPOTIFY_TOKEN_URL
    expiry_margin: int = Field(
        default=60,
        ge=0,
        description="Refresh tokens expiring within this many seconds",
    )
    callback_timeout: PositiveFloat | None = Field(
        default=None,
        description="Seconds to wait for the browser redirect (unset waits indefinitely)",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for token endpoint requests",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: Any) -> list[str]:
        """Parse comma-separated strings from env vars."""
        if isinstance(v, str):
            return [s.strip() for s in v.replace(" ", ",").split(",") if s.strip()]
        return v or []

    @field_validator("callback_path")
    @classmethod
    def ensure_leading_slash(cls, v: str) -> str:
        """Normalize the callback path to start with a slash."""
        return v if v.startswith("/") else f"/{v}"

    @property
    def redirect_uri(self) -> str:
        """Preferred redirect URI (before any port fallback)."""
        return f"http://{self.redirect_host}:{self.redirect_port}{self.callback_path}"


class StoreSettings(BaseSettings):
    """Token storage settings.

    Environment prefix: SPOTIFY_STORE__
    Example: SPOTIFY_STORE__BACKEND=memory
    """

    model_config = SettingsConfigDict(
        env_prefix="SPOTIFY_STORE__",
        extra="ignore",
    )

    backend: Literal["keyring", "memory"] = "keyring"
    service_name: str = DEFAULT_SERVICE_NAME


class ApiSettings(BaseSettings):
    """Spotify Web API settings.

    Environment prefix: SPOTIFY_API__
    Example: SPOTIFY_API__TIMEOUT=10
    """

    model_config = SettingsConfigDict(
        env_prefix="SPOTIFY_API__",
        extra="ignore",
    )

    base_url: str = "https://api.spotify.com/v1"
    timeout: float = Field(default=30.0, gt=0)


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: SPOTIFY_LOG__
    Example: SPOTIFY_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="SPOTIFY_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: str = "[%(name)s] %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: SPOTIFY_MCP__ (sections read their own prefixes)
    """

    model_config = SettingsConfigDict(
        env_prefix="SPOTIFY_MCP__",
        extra="ignore",
    )

    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def sections(self) -> list[tuple[str, BaseSettings]]:
        """Return ``(name, section)`` pairs in display order."""
        return [
            ("oauth", self.oauth),
            ("store", self.store),
            ("api", self.api),
            ("log", self.log),
        ]

    def to_display(self) -> str:
        """Format the configuration for display with secrets redacted."""
        lines: list[str] = []
        for section_name, section in self.sections():
            if lines:
                lines.append("")
            lines.append(f"[{section_name}]")
            for field, value in section.model_dump(exclude=_SENSITIVE_FIELDS).items():
                lines.append(f"  {field} = {value!r}")
            for rn in sorted(_SENSITIVE_FIELDS & type(section).model_fields.keys()):
                shown = _REDACTED if getattr(section, rn) else ""
                lines.append(f"  {rn} = {shown!r}")
        return "\n".join(lines)


def load_env_file(path: str | os.PathLike[str] | None = None) -> Path | None:
    """Load a dotenv file into the process environment.

    Resolution order: ``path``, then ``SPOTIFY_MCP_ENV_FILE``, then
    ``./.env``. Variables already set in the environment win.

    Returns
    -------
    Path or None
        The file that was loaded, or None if none was found.
    """
    explicit = path or os.environ.get(ENV_FILE_VARIABLE, "").strip() or None
    env_path = Path(explicit).expanduser() if explicit else Path(".env")
    if not env_path.is_absolute():
        env_path = Path.cwd() / env_path

    if env_path.is_file():
        load_dotenv(env_path, override=False)
        return env_path
    if explicit:
        logger.error(
            "Specified env file not found at %s. Proceeding with existing environment.",
            env_path,
        )
    return None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return Settings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()
