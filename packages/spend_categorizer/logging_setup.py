"""Centralized logging configuration for the ``spend_categorizer`` package.

- ``configure_logging(...)`` attaches a single ``StreamHandler`` to the package
  root logger (``"spend_categorizer"``). Entrypoints (the CLI) call it once.
- ``get_logger(name)`` returns a named logger and makes sure the package root
  has a ``NullHandler`` when nothing has been configured, so library use stays
  silent.

Library modules never attach handlers themselves.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "spend_categorizer"
_LEVEL_ENV = "SPEND_CATEGORIZER_LOG_LEVEL"
_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level = level.strip().upper()
        if level.isdigit():
            return int(level)
        numeric = getattr(logging, level, None)
        if isinstance(numeric, int):
            return numeric
    # Unset or unrecognized: fall through to the env var.
    env_val = os.getenv(_LEVEL_ENV)
    if env_val and (level is None or env_val.strip().upper() != level):
        return _parse_level(env_val)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Configure the package root logger exactly once.

    ``level`` accepts an ``int`` or a level name; when ``None`` the
    ``SPEND_CATEGORIZER_LOG_LEVEL`` environment variable is used, falling back
    to ``INFO``.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)

    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or "%(asctime)s %(name)s %(levelname)s %(message)s"))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    # Avoid double emission via the root logger.
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
