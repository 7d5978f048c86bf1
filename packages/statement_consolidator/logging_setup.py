"""Logging for ``statement_consolidator``: one console handler, set up by the CLI.

Library modules only ever call ``get_logger("statement_consolidator.<module>")``.
Until an entrypoint calls :func:`configure_logging`, the package logger
carries a ``NullHandler`` and stays silent.

Records follow a ``component:event key=value`` convention, e.g.
``store:mapping_saved kind=debtor path=debtors.yaml entries=12``. The default
format includes the thread name because files and transactions are processed
on a worker pool.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "statement_consolidator"
LEVEL_ENV_VAR = "SC_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s %(message)s"

# Identifies the handler installed by configure_logging().
_CONSOLE_HANDLER_NAME = "statement_consolidator.console"


def resolve_level(level: int | str | None = None) -> int:
    """Turn ``level`` (or ``$SC_LOG_LEVEL`` when ``None``) into a level number.

    Accepts ints, digit strings and standard names in any case. Unknown names
    raise ``ValueError``; nothing set at all means ``INFO``.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV_VAR) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelNamesMapping().get(name)
    if value is None:
        raise ValueError(f"unknown log level: {level!r}")
    return value


def _console_handler(logger: logging.Logger) -> logging.Handler | None:
    for h in logger.handlers:
        if h.get_name() == _CONSOLE_HANDLER_NAME:
            return h
    return None


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
    force: bool = False,
) -> None:
    """Attach the console handler to the package logger.

    A second call is a no-op unless ``force`` is set, in which case the
    previous console handler is replaced. Records do not propagate to the
    root logger once configured.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    existing = _console_handler(logger)
    if existing is not None:
        if not force:
            return
        logger.removeHandler(existing)

    resolved = resolve_level(level)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.set_name(_CONSOLE_HANDLER_NAME)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))

    for h in [h for h in logger.handlers if isinstance(h, logging.NullHandler)]:
        logger.removeHandler(h)
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["DEFAULT_FORMAT", "configure_logging", "get_logger", "resolve_level"]
