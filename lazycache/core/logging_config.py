"""Logging configuration for lazycache."""

from __future__ import annotations

import logging
import os
import sys

_CONFIGURED = False
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Attach a stderr handler to the ``lazycache`` logger hierarchy once.

    The level comes from ``level`` when given, else ``LAZYCACHE_LOG_LEVEL``
    (default: WARNING). Later calls with an explicit level only adjust it.
    """
    global _CONFIGURED

    if level is None:
        level = os.getenv("LAZYCACHE_LOG_LEVEL", "WARNING")
    if isinstance(level, str):
        level = getattr(logging, level.strip().upper(), logging.WARNING)

    root_logger = logging.getLogger("lazycache")
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)

    if _CONFIGURED:
        return
    _CONFIGURED = True

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(handler)
