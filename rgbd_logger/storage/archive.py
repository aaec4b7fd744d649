"""Bundle a session directory into ``<session-id>.tar.gz``."""

from __future__ import annotations

import gzip
import shutil
import tarfile
from pathlib import Path
from typing import Optional

from rgbd_logger.core.logging_utils import get_module_logger

from .artifacts import ArtifactInfo

logger = get_module_logger(__name__)

_COPY_CHUNK = 1 << 20


def _collect_files(session_dir: Path) -> list[Path]:
    return sorted(
        (p for p in session_dir.rglob("*") if p.is_file() and not p.name.startswith(".")),
        key=lambda p: p.relative_to(session_dir).as_posix(),
    )


def build_archive(session_dir: Path, archive_dir: Optional[Path] = None) -> ArtifactInfo:
    """Tar every file under ``session_dir``, gzip the tar, and remove the intermediate.

    Members are stored under ``<session-id>/`` in sorted order. On failure no
    partial ``.tar`` or ``.tar.gz`` is left behind.
    """
    session_dir = Path(session_dir)
    if not session_dir.is_dir():
        raise FileNotFoundError(f"Session directory {session_dir} does not exist")
    session_id = session_dir.name
    target_dir = Path(archive_dir) if archive_dir is not None else session_dir.parent
    target_dir.mkdir(parents=True, exist_ok=True)
    tar_path = target_dir / f"{session_id}.tar"
    gz_path = target_dir / f"{session_id}.tar.gz"

    files = _collect_files(session_dir)
    try:
        with tarfile.open(tar_path, "w", format=tarfile.PAX_FORMAT) as tar:
            for path in files:
                arcname = f"{session_id}/{path.relative_to(session_dir).as_posix()}"
                tar.add(path, arcname=arcname, recursive=False)
        with open(tar_path, "rb") as src, gzip.open(gz_path, "wb") as dst:
            shutil.copyfileobj(src, dst, _COPY_CHUNK)
    except BaseException:
        gz_path.unlink(missing_ok=True)
        raise
    finally:
        tar_path.unlink(missing_ok=True)

    info = ArtifactInfo.from_path(gz_path)
    logger.info("Archived %d file(s) into %s (%s bytes)", len(files), gz_path.name, info.byte_size)
    return info


def list_archive(archive_path: Path) -> list[str]:
    with tarfile.open(archive_path, "r:gz") as tar:
        return tar.getnames()


__all__ = ["build_archive", "list_archive"]
