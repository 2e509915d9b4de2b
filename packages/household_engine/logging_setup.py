"""Logging setup for the ``household_engine`` package.

``configure_logging()`` is called once by entrypoints (the CLI) and attaches a
single ``StreamHandler`` to the ``household_engine`` logger. Library modules
only call ``get_logger(__name__)`` and never attach handlers of their own.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_ROOT = "household_engine"
_ENV_LEVEL = "HOUSEHOLD_ENGINE_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_configured = False


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv(_ENV_LEVEL) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelName(name)
    # getLevelName returns "Level X" for unknown names.
    return value if isinstance(value, int) else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach the package handler; later calls are no-ops.

    Parameters
    ----------
    level:
        ``int`` level or level name. ``None`` reads ``HOUSEHOLD_ENGINE_LOG_LEVEL``
        and falls back to ``INFO``.
    fmt:
        Format string for the handler.
    stream:
        Destination stream (``sys.stderr`` by default, keeping stdout free for
        JSON output).
    """

    global _configured
    if _configured:
        return

    numeric = _resolve_level(level)
    logger = logging.getLogger(_ROOT)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(numeric)
    logger.propagate = False

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)``; silent until configured."""

    root = logging.getLogger(_ROOT)
    if not _configured and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
