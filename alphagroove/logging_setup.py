"""
Process-wide logging for the CLI.

Backtest results are printed to stdout by the reporter; log records go to
stderr and, optionally, to a file.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Chatty at DEBUG (font scanning, PNG chunks, connection pools).
_NOISY_LOGGERS = ("matplotlib", "PIL", "urllib3")


def parse_level(value: str | int | None, default: int = logging.INFO) -> int:
    """'debug' / 'WARNING' / 10 -> logging level; unknown names give `default`."""
    if isinstance(value, int):
        return value
    name = (value or "").strip().upper()
    if not name:
        return default
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else default


def _file_handler(log_file: str | Path) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(
    *,
    level: int = logging.INFO,
    log_file: str | Path | None = None,
    console: bool = True,
) -> None:
    """Replace the root handlers. Safe to call more than once per process."""
    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(stream=sys.stderr))
    if log_file:
        handlers.append(_file_handler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers or [logging.NullHandler()],
        force=True,
    )
    floor = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(floor)
