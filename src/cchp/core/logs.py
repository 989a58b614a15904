"""Diagnostic logging — a rotating side log, never stdout."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"


def setup_logging(log_file: Path, level: str = "INFO") -> logging.Handler:
    """Attach one handler to the `cchp` logger; falls back to stderr.

    Safe to call more than once per process: the previous handler is replaced.
    """
    pkg_logger = logging.getLogger("cchp")
    for old in list(pkg_logger.handlers):
        pkg_logger.removeHandler(old)
        old.close()

    handler: logging.Handler
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
        )
    except OSError:
        handler = logging.StreamHandler(sys.stderr)

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    pkg_logger.addHandler(handler)
    numeric = logging.getLevelName(level.upper())
    pkg_logger.setLevel(numeric if isinstance(numeric, int) else logging.INFO)
    pkg_logger.propagate = False
    return handler
