"""Logger wiring for ingestion runs.

Every module logs under ``financial_ingest.<module>`` and leaves output to
whoever embeds the package. The CLI calls :func:`configure_logging` once so
that tier and fallback decisions reach stderr, with the level taken
from ``FINANCIAL_INGEST_LOG_LEVEL`` unless one is passed in.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "financial_ingest"
_LEVEL_ENV_VAR = "FINANCIAL_INGEST_LOG_LEVEL"
_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        # Numeric strings or standard level names (INFO/DEBUG/etc.).
        level = level.strip().upper()
        if level.isdigit():
            return int(level)
        numeric = getattr(logging, level, None)
        if isinstance(numeric, int):
            return numeric
    # Env override only when no explicit level was given.
    env_val = os.getenv(_LEVEL_ENV_VAR)
    if level is None and env_val:
        return _parse_level(env_val.strip().upper() or "INFO")
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Send package records to ``stream``; later calls are no-ops.

    Parameters
    ----------
    level:
        ``logging`` constant or a name such as ``"DEBUG"``. ``None`` reads
        ``FINANCIAL_INGEST_LOG_LEVEL`` and falls back to ``INFO``.
    fmt:
        Record format; timestamp, logger name, level and message by default.
    stream:
        Where records go.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)

    # Drop NullHandlers so they don't linger next to the real handler.
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(
        logging.Formatter(fmt or "%(asctime)s %(name)s %(levelname)s %(message)s")
    )

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Named logger; the package stays silent until :func:`configure_logging`."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
