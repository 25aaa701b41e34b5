"""
Project-wide logging setup for nutdash.

Provides a simple, consistent console logger with optional JSON output.
Controlled via environment variables:
- NUTDASH_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default: INFO)
- NUTDASH_LOG_FORMAT: text|json (default: text)
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
TEXT_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def _get_level(level: Optional[str] = None) -> int:
    level = (level or os.getenv("NUTDASH_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level, logging.INFO)


def build_formatter(fmt: Optional[str] = None) -> logging.Formatter:
    """Return the formatter selected by ``fmt`` or NUTDASH_LOG_FORMAT."""
    fmt = (fmt or os.getenv("NUTDASH_LOG_FORMAT", "text")).lower()
    if fmt == "json":
        # Fields passed through ``extra=`` end up as top-level JSON keys.
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "name": "logger"},
        )
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt=TEXT_DATEFMT)


def setup_logging(
    force: bool = False,
    *,
    logger: Optional[logging.Logger] = None,
    level: Optional[str] = None,
    fmt: Optional[str] = None,
) -> None:
    """Configure root logging for console output.

    If a handler is already present and force is False, this is a no-op.
    If NUTDASH_LOG_FORMAT=json, emits one JSON object per record.
    """
    target_logger = logger or logging.getLogger()
    if target_logger.handlers and not force:
        return

    if force:
        for h in list(target_logger.handlers):
            target_logger.removeHandler(h)

    target_logger.setLevel(_get_level(level))

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(fmt))
    target_logger.addHandler(handler)
