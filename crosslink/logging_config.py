from __future__ import annotations

import logging
import os
from typing import Iterable, Optional

from pythonjsonlogger.json import JsonFormatter

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"

# chatty third-party loggers kept at WARNING unless asked otherwise
QUIET_LOGGERS = ("werkzeug", "numba", "h5py")


def level_from_env(default: int = logging.INFO) -> int:
    """Log level from CROSSLINK_LOG_LEVEL (name or number)."""
    raw = os.getenv("CROSSLINK_LOG_LEVEL")
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default


def _build_formatter(format_mode: str) -> logging.Formatter:
    if format_mode == "plain":
        return logging.Formatter(PLAIN_FORMAT)
    # structured extras (group, consumer, sequence, ...) become top-level JSON keys
    return JsonFormatter(JSON_FIELDS, rename_fields={"levelname": "level", "name": "logger"})


def configure_logging(
        level: int = logging.INFO,
        force_format: Optional[str] = None,
        quiet: Iterable[str] = QUIET_LOGGERS,
) -> None:
    """
    Configure the root logger for crosslink processes.

    Format selection:
        1) force_format argument ("json" or "plain") if provided
        2) env var CROSSLINK_LOG_FORMAT
        3) default = "json"

    Existing root handlers are replaced so repeated calls (tests, reloader)
    never duplicate output.
    """
    format_mode = (force_format or os.getenv("CROSSLINK_LOG_FORMAT", "json")).lower()

    handler = logging.StreamHandler()
    handler.setFormatter(_build_formatter(format_mode))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
