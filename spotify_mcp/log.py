"""Logging utilities for spotify-mcp.

Everything logs to stderr: stdout is reserved for the tool-calling
protocol the credential manager is embedded in.
"""

from __future__ import annotations

import logging
import sys

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from .config import LogSettings


class _LoggerHolder:
    """Holder for the global logger instance."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get the spotify_mcp logger instance.

    Returns
    -------
    logging.Logger
        The ``spotify_mcp`` logger configured with a stderr handler.
    """
    if _LoggerHolder.instance is None:
        logger = logging.getLogger("spotify_mcp")
        logger.setLevel(logging.WARNING)

        # Only add handler if none exists
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            formatter = logging.Formatter("[%(name)s] %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def set_level(level: int | str) -> None:
    """Set the logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "DEBUG").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def configure(settings: LogSettings) -> logging.Logger:
    """Apply level and format from ``LogSettings``.

    Parameters
    ----------
    settings : LogSettings
        The logging section of the resolved settings.

    Returns
    -------
    logging.Logger
        The configured package logger.
    """
    logger = get_logger()
    set_level(settings.level)
    for handler in logger.handlers:
        handler.setFormatter(logging.Formatter(settings.format))
    return logger


def mask_token(token: str, visible: int = 6) -> str:
    """Shorten a secret for log output."""
    if len(token) <= visible:
        return "***"
    return f"{token[:visible]}..."
