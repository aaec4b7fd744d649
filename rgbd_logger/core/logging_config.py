"""Process logging for the recorder CLI plus a per-session log.

The process log rotates under ``~/.rgbd_logger/logs``. Each recording also
gets ``session.log`` in its own directory so the archive carries the
recorder's account of that session.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from .logging_utils import LOGGER_NAMESPACE
from .paths import SESSION_LOG_FILENAME

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
PROCESS_LOG_MAX_BYTES = 2 * 1024 * 1024
PROCESS_LOG_BACKUPS = 3

# Chatty at INFO: request lines from the upload client, PyAV's codec messages
THIRD_PARTY_LOGGERS = ("aiohttp.access", "aiohttp.client", "asyncio", "libav")


def coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        if not isinstance(value, int):
            raise ValueError(f"Unknown log level '{level}'")
        return value
    return int(level)


def _formatter() -> logging.Formatter:
    return logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """Replace the root handlers with stdout and/or a rotating process log."""
    numeric_level = coerce_level(level)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if console:
        root.addHandler(logging.StreamHandler(sys.stdout))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        root.addHandler(RotatingFileHandler(
            log_path,
            maxBytes=PROCESS_LOG_MAX_BYTES,
            backupCount=PROCESS_LOG_BACKUPS,
            encoding="utf-8",
        ))
    if not root.handlers:
        root.addHandler(logging.NullHandler())

    for handler in root.handlers:
        handler.setFormatter(_formatter())
    root.setLevel(numeric_level)

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, numeric_level))


def attach_session_log(session_dir: Path, level: Union[int, str] = logging.INFO) -> logging.Handler:
    """Copy the recorder's own records into ``session_dir/session.log`` until detached."""
    handler = logging.FileHandler(Path(session_dir) / SESSION_LOG_FILENAME, encoding="utf-8")
    handler.setLevel(coerce_level(level))
    handler.setFormatter(_formatter())
    logging.getLogger(LOGGER_NAMESPACE).addHandler(handler)
    return handler


def detach_session_log(handler: logging.Handler) -> None:
    logging.getLogger(LOGGER_NAMESPACE).removeHandler(handler)
    handler.close()


__all__ = [
    "LOG_DATEFMT",
    "LOG_FORMAT",
    "attach_session_log",
    "coerce_level",
    "configure_logging",
    "detach_session_log",
]
