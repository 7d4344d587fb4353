"""Package-wide logging for ``pnl_categorizer``.

Only the CLI (or a host application) calls :func:`configure_logging`; it
installs one ``StreamHandler`` on the ``pnl_categorizer`` logger and stops
propagation to the root logger. Every module gets its logger through
:func:`get_logger` and writes short ``event:step key=value`` lines, e.g.::

    rates:fallback reason=timeout currencies=EUR,USD

Environment overrides, used when the caller passes ``None``:

- ``PNL_LOG_LEVEL``: level name or number (default ``INFO``)
- ``PNL_LOG_FORMAT``: ``logging.Formatter`` format string
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "pnl_categorizer"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False


def _level_from(value: int | str | None) -> int | None:
    if value is None or isinstance(value, int):
        return value
    name = value.strip().upper()
    if name.isdigit():
        return int(name)
    level = logging.getLevelName(name)
    # getLevelName returns "Level X" for unknown names
    return level if isinstance(level, int) else None


def resolve_level(level: int | str | None = None) -> int:
    """Explicit ``level``, then ``PNL_LOG_LEVEL``, then ``INFO``."""

    for candidate in (level, os.getenv("PNL_LOG_LEVEL")):
        resolved = _level_from(candidate)
        if resolved is not None:
            return resolved
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> logging.Logger:
    """Attach the package handler once and return the package logger.

    Later calls are no-ops, so nested entrypoints cannot stack handlers.
    """

    global _CONFIGURED
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _CONFIGURED:
        return logger

    for h in [h for h in logger.handlers if isinstance(h, logging.NullHandler)]:
        logger.removeHandler(h)

    resolved = resolve_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(
        logging.Formatter(fmt or os.getenv("PNL_LOG_FORMAT") or _DEFAULT_FORMAT)
    )
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False

    _CONFIGURED = True
    return logger


def get_logger(name: str) -> logging.Logger:
    """Child logger of ``pnl_categorizer``; silent until configured."""

    pkg = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
