"""Human-readable session manifest (``recording_info.yaml``)."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import aiofiles
import yaml

from rgbd_logger.core.logging_utils import get_module_logger
from rgbd_logger.modules.base.storage_utils import file_size, format_bytes

from .artifacts import ArtifactInfo

logger = get_module_logger(__name__)

MANIFEST_VERSION = 1
UNKNOWN = "unknown"


def _size_fields(path: Optional[Path]) -> dict[str, Any]:
    size = file_size(path) if path is not None else None
    if size is None:
        return {"size_bytes": UNKNOWN, "size": UNKNOWN}
    return {"size_bytes": size, "size": format_bytes(size)}


def _error_section(name: Optional[str], error: str) -> dict[str, Any]:
    section: dict[str, Any] = {}
    if name:
        section["file"] = name
    section.update({"status": "error", "error": error, "size_bytes": UNKNOWN, "size": UNKNOWN})
    return section


def _artifact_section(path: Optional[Path], error: Optional[str], **extra: Any) -> dict[str, Any]:
    if error is not None or path is None:
        section = _error_section(path.name if path is not None else None, error or "not produced")
        section.update(extra)
        return section
    section = {"file": path.name, "status": "ok"}
    section.update(_size_fields(path))
    if section["size_bytes"] == UNKNOWN:
        section["status"] = "error"
        section["error"] = "file missing at manifest time"
    section.update(extra)
    return section


def render_manifest(
    *,
    session_id: str,
    started_at: datetime,
    ended_at: datetime,
    frame_count: int,
    device: Mapping[str, Any],
    video_path: Optional[Path],
    video_stats: Optional[Mapping[str, Any]] = None,
    video_error: Optional[str] = None,
    frame_data: Optional[ArtifactInfo] = None,
    chunks: Sequence[Any] = (),
    depth_stats: Optional[Mapping[str, Any]] = None,
    depth_error: Optional[str] = None,
    errors: Sequence[str] = (),
) -> dict[str, Any]:
    """Describe a finalized session.

    Sizes are read from disk now, so they match the files being archived.
    A failed artifact is marked ``status: error`` with ``size_bytes: unknown``
    instead of being reported as zero or left out.
    """
    duration = max(0.0, (ended_at - started_at).total_seconds())

    video = _artifact_section(video_path, video_error, **dict(video_stats or {}))

    if frame_data is None:
        frame_section = _error_section(None, "not produced")
    elif not frame_data.ok:
        frame_section = _error_section(frame_data.path.name, frame_data.error or "write failed")
    else:
        frame_section = _artifact_section(frame_data.path, None)
    frame_section["records"] = frame_count

    chunk_rows = []
    total_bytes = 0
    total_frames = 0
    for chunk in chunks:
        size = file_size(chunk.path)
        row: dict[str, Any] = {"name": chunk.path.name, "frames": int(chunk.frame_count)}
        if size is None:
            row.update({"size_bytes": UNKNOWN, "size": UNKNOWN})
        else:
            row.update({"size_bytes": size, "size": format_bytes(size)})
            total_bytes += size
        total_frames += int(chunk.frame_count)
        chunk_rows.append(row)

    depth: dict[str, Any] = {
        "status": "error" if depth_error else "ok",
        "chunks": chunk_rows,
        "chunk_count": len(chunk_rows),
        "total_frames": total_frames,
        "total_size_bytes": total_bytes,
        "total_size": format_bytes(total_bytes),
    }
    if depth_error:
        depth["error"] = depth_error
    depth.update(dict(depth_stats or {}))

    manifest: dict[str, Any] = {
        "manifest_version": MANIFEST_VERSION,
        "session": {
            "id": session_id,
            "start_time": started_at.isoformat(timespec="milliseconds"),
            "end_time": ended_at.isoformat(timespec="milliseconds"),
            "duration_seconds": round(duration, 3),
            "frame_count": frame_count,
        },
        "device": dict(device),
        "video": video,
        "frame_data": frame_section,
        "depth": depth,
    }
    if errors:
        manifest["errors"] = list(errors)
    return manifest


def dump_manifest(manifest: Mapping[str, Any]) -> str:
    return yaml.safe_dump(dict(manifest), sort_keys=False, allow_unicode=True, default_flow_style=False)


async def write_manifest_async(path: Path, manifest: Mapping[str, Any]) -> ArtifactInfo:
    """Write ``manifest`` through a temp file and a rename, so an existing
    manifest is never partially overwritten."""
    path = Path(path)
    text = dump_manifest(manifest)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as handle:
            await handle.write(text)
            await handle.flush()
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    logger.info("Wrote manifest %s", path.name)
    return ArtifactInfo.from_path(path)


def read_manifest(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


__all__ = [
    "MANIFEST_VERSION",
    "dump_manifest",
    "read_manifest",
    "render_manifest",
    "write_manifest_async",
]
