"""Shared helpers for session directories, filenames and size reporting."""

from __future__ import annotations

import os
import re
from datetime import datetime
from pathlib import Path
from typing import Optional


def sanitize_component(value: str) -> str:
    """
    Sanitize a free-form label for use in a directory or file name.

    Lowercases, replaces separators and whitespace with underscores,
    drops everything else that is not alphanumeric, ``-`` or ``_``, and
    collapses consecutive underscores.
    """
    safe = value.strip().lower()
    safe = re.sub(r"[\s/\\:]+", "_", safe)
    safe = re.sub(r"[^a-z0-9_\-]", "", safe)
    safe = re.sub(r"_+", "_", safe)
    return safe.strip("_")


def create_session_id(prefix: str = "session", now: Optional[datetime] = None) -> str:
    """Build ``{prefix}_{YYYYmmdd_HHMMSS}``."""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    safe_prefix = sanitize_component(prefix) or "session"
    return f"{safe_prefix}_{stamp}"


def unique_session_dir(root: Path, session_id: str) -> Path:
    """Return ``root/session_id``, suffixed ``_2``, ``_3``... if already taken."""
    candidate = Path(root) / session_id
    counter = 2
    while candidate.exists() or candidate.with_name(f"{candidate.name}.tar.gz").exists():
        candidate = Path(root) / f"{session_id}_{counter}"
        counter += 1
    return candidate


_UNITS = ("bytes", "KB", "MB", "GB", "TB")


def format_bytes(size: Optional[int]) -> str:
    """Human-readable byte count using 1000-based file units."""
    if size is None:
        return "unknown"
    value = float(size)
    if abs(value) < 1000:
        return f"{int(value)} bytes"
    for unit in _UNITS[1:]:
        value /= 1000.0
        if abs(value) < 1000 or unit == _UNITS[-1]:
            return f"{value:.1f} {unit}"
    return f"{value:.1f} {_UNITS[-1]}"  # pragma: no cover


def file_size(path: Path) -> Optional[int]:
    """Size on disk, or None when the file cannot be stat'ed."""
    try:
        return os.path.getsize(path)
    except OSError:
        return None


__all__ = [
    "create_session_id",
    "file_size",
    "format_bytes",
    "sanitize_component",
    "unique_session_dir",
]
