"""
countryblock.utils.logger
~~~~~~~~~~~~~~~~~~~~~~~~~

Logging setup for the ``countryblock`` command:

* ISO-8601 timestamps in UTC, so cron output lines up with the
  generation times reported by the prefix source.
* Coloured level names when stderr is a TTY.
* Optional rotating log file.

Typical usage
-------------

>>> from countryblock.utils.logger import setup, get_logger
>>> setup(level="DEBUG", logfile="/var/log/countryblock.log")
>>> log = get_logger(__name__)
>>> log.info("Logger ready")

Environment variable overrides
------------------------------
* ``COUNTRYBLOCK_LOG_LEVEL`` – default level (DEBUG, INFO …).
* ``COUNTRYBLOCK_LOG_FILE`` – if set, also write logs to this path.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

# --------------------------------------------------------------------------- #
# Internal helpers
# --------------------------------------------------------------------------- #

_COLOURS = {
    "DEBUG": 37,  # White
    "INFO": 32,  # Green
    "WARNING": 33,  # Yellow
    "ERROR": 31,  # Red
    "CRITICAL": 41,  # Red background
}


class _UTCFormatter(logging.Formatter):
    """Formatter that renders record times in UTC."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.fromtimestamp(record.created, timezone.utc)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="seconds")


class _ColourHandler(logging.StreamHandler):
    """StreamHandler that colours the levelname on terminals."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        isatty = getattr(self.stream, "isatty", None)
        if not (isatty and isatty()):
            return super().format(record)
        original = record.levelname
        record.levelname = f"\033[{_COLOURS.get(original, 37)}m{original}\033[0m"
        try:
            return super().format(record)
        finally:
            record.levelname = original


# --------------------------------------------------------------------------- #
# Public API
# --------------------------------------------------------------------------- #

ROOT_NAME = "countryblock"
_DEFAULT_LEVEL = os.getenv("COUNTRYBLOCK_LOG_LEVEL", "WARNING").upper()
_DEFAULT_FILE = os.getenv("COUNTRYBLOCK_LOG_FILE")

_configured = False


def setup(
    *,
    level: str | int = _DEFAULT_LEVEL,
    logfile: str | os.PathLike | None = _DEFAULT_FILE,
    max_bytes: int = 2_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> None:
    """
    Configure the ``countryblock`` logger the first time it is called.

    Parameters
    ----------
    level:
        Minimum level, name or number.
    logfile:
        Optional path to a rotating log file.  ``None`` means console only.
    max_bytes, backup_count:
        Rotation settings for *logfile*.
    force:
        Drop previously installed handlers and reconfigure.
    """
    global _configured
    if _configured and not force:
        return

    if isinstance(level, str):
        level = level.upper()

    root = logging.getLogger(ROOT_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)

    formatter = _UTCFormatter(fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    console = _ColourHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if logfile:
        Path(logfile).parent.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            logfile, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        fh.setLevel(level)
        fh.setFormatter(formatter)
        root.addHandler(fh)

    _configured = True
    root.debug("Logger configured (level=%s, file=%s)", level, logfile)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger inside the ``countryblock`` namespace."""
    if not name:
        return logging.getLogger(ROOT_NAME)
    if not name.startswith(ROOT_NAME):
        name = f"{ROOT_NAME}.{name}"
    return logging.getLogger(name)
