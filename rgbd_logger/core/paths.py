"""Centralized path constants for the recorder."""

from __future__ import annotations

import os
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
PROJECT_ROOT = PACKAGE_ROOT.parent

# Shipped defaults live next to the package so an installed wheel finds them.
CONFIG_PATH = PACKAGE_ROOT / "config.txt"

_STATE_ENV = os.environ.get("RGBD_LOGGER_STATE_DIR")
USER_STATE_DIR = Path(_STATE_ENV).expanduser() if _STATE_ENV else (Path.home() / ".rgbd_logger")
USER_CONFIG_PATH = USER_STATE_DIR / "config.txt"
LOGS_DIR = USER_STATE_DIR / "logs"
MASTER_LOG_FILE = LOGS_DIR / "recorder.log"

# Artifact names inside a session directory.
VIDEO_FILENAME = "recording.mp4"
FRAME_DATA_FILENAME = "frame_data.bson"
MANIFEST_FILENAME = "recording_info.yaml"
SESSION_LOG_FILENAME = "session.log"
DEPTH_CHUNK_TEMPLATE = "depth_map_{index}.depth"


def ensure_directories() -> None:
    """Create user state directories if they don't exist."""

    USER_STATE_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)


__all__ = [
    "PACKAGE_ROOT",
    "PROJECT_ROOT",
    "CONFIG_PATH",
    "USER_STATE_DIR",
    "USER_CONFIG_PATH",
    "LOGS_DIR",
    "MASTER_LOG_FILE",
    "VIDEO_FILENAME",
    "FRAME_DATA_FILENAME",
    "MANIFEST_FILENAME",
    "SESSION_LOG_FILENAME",
    "DEPTH_CHUNK_TEMPLATE",
    "ensure_directories",
]
