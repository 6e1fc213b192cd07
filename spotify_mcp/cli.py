"""Command-line interface for spotify-mcp credential management."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from typing import TYPE_CHECKING

from .exceptions import SpotifyMCPException


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .auth.credentials import CredentialManager
    from .config import Settings


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Parameters
    ----------
    argv : list[str], optional
        Arguments to parse (defaults to ``sys.argv[1:]``).

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="spotify-mcp",
        description="Spotify credential management for spotify-mcp",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Dotenv file to load (default: $SPOTIFY_MCP_ENV_FILE or ./.env)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # login command
    subparsers.add_parser(
        "login",
        help="Authorize with Spotify in the browser if no valid tokens are stored",
    )

    # token command
    subparsers.add_parser(
        "token",
        help="Print a valid access token, refreshing it if needed",
    )

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show the stored authorization status",
    )
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the status as JSON",
    )

    # logout command
    subparsers.add_parser(
        "logout",
        help="Delete the stored tokens from the keyring",
    )

    # config command
    subparsers.add_parser(
        "config",
        help="Show the resolved configuration (secrets redacted)",
    )

    args = parser.parse_args(argv)

    handlers: dict[str, Callable[[argparse.Namespace, Settings], int]] = {
        "login": handle_login,
        "token": handle_token,
        "status": handle_status,
        "logout": handle_logout,
        "config": handle_config,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    from pydantic import ValidationError

    from . import log
    from .config import clear_settings, get_settings, load_env_file

    try:
        load_env_file(args.env_file)
        clear_settings()
        settings = get_settings()
        log.configure(settings.log)
        return handler(args, settings)
    except (SpotifyMCPException, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _run_with_credentials(
    settings: Settings,
    action: Callable[[CredentialManager], Awaitable[int]],
) -> int:
    """Build a CredentialManager, run ``action`` on it and clean up."""
    from .auth import create_credential_manager

    async def _run() -> int:
        credentials = create_credential_manager(settings)
        try:
            return await action(credentials)
        finally:
            await credentials.aclose()

    return asyncio.run(_run())


def handle_login(args: argparse.Namespace, settings: Settings) -> int:  # noqa: ARG001
    """Handle the login command."""

    async def _login(credentials: CredentialManager) -> int:
        tokens = await credentials.get_tokens()
        print(f"Authorized. Scopes: {tokens.scope or '(none reported)'}")
        return 0

    return _run_with_credentials(settings, _login)


def handle_token(args: argparse.Namespace, settings: Settings) -> int:  # noqa: ARG001
    """Handle the token command.

    The access token is the only thing written to stdout.
    """

    async def _token(credentials: CredentialManager) -> int:
        print(await credentials.get_access_token())
        return 0

    return _run_with_credentials(settings, _token)


def handle_status(args: argparse.Namespace, settings: Settings) -> int:
    """Handle the status command."""

    async def _status(credentials: CredentialManager) -> int:
        status = await credentials.status()
        if args.json:
            print(json.dumps(status, indent=2))
        else:
            print(format_status(status))
        return 0

    return _run_with_credentials(settings, _status)


def handle_logout(args: argparse.Namespace, settings: Settings) -> int:  # noqa: ARG001
    """Handle the logout command."""

    async def _logout(credentials: CredentialManager) -> int:
        if await credentials.logout():
            print("Stored tokens removed.")
        else:
            print("No stored tokens.")
        return 0

    return _run_with_credentials(settings, _logout)


def handle_config(args: argparse.Namespace, settings: Settings) -> int:  # noqa: ARG001
    """Handle the config command."""
    print(settings.to_display())
    return 0


def format_status(status: dict[str, object]) -> str:
    """Format a status dict for terminal output.

    Parameters
    ----------
    status : dict
        Result of ``CredentialManager.status()``.

    Returns
    -------
    str
        Human-readable status lines.
    """
    if not status.get("authorized"):
        return "Not authorized. Run 'spotify-mcp login'."

    lines = ["Authorized."]
    if status.get("expired"):
        lines.append("  access token: expired (refreshed on next use)")
    else:
        lines.append(f"  access token: expires in {status['expires_in_seconds']} seconds")
    lines.append(f"  scope: {status.get('scope') or '(none reported)'}")
    return "\n".join(lines)


if __name__ == "__main__":
    sys.exit(main())
