"""Decode the depth chunks of a session back into ``.npy`` frames."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np

from rgbd_logger.core.logging_utils import get_module_logger
from rgbd_logger.core.paths import MANIFEST_FILENAME
from rgbd_logger.modules.Depth.frame import FrameGeometry
from rgbd_logger.modules.Depth.reader import frame_to_array, iter_chunk_frames
from rgbd_logger.storage.manifest import read_manifest

logger = get_module_logger(__name__)


def geometry_from_manifest(session_dir: Path) -> FrameGeometry:
    manifest = read_manifest(Path(session_dir) / MANIFEST_FILENAME)
    raw = (manifest.get("depth") or {}).get("geometry")
    if not raw:
        raise ValueError(f"{MANIFEST_FILENAME} in {session_dir} has no depth geometry")
    return FrameGeometry(
        width=int(raw["width"]),
        height=int(raw["height"]),
        row_stride=int(raw["row_stride"]),
        bytes_per_sample=int(raw.get("bytes_per_sample", 4)),
    )


def chunk_files(session_dir: Path) -> list[Path]:
    def index(path: Path) -> int:
        try:
            return int(path.stem.rsplit("_", 1)[-1])
        except ValueError:
            return -1

    return sorted(Path(session_dir).glob("depth_map_*.depth"), key=index)


def unpack_session(
    session_dir: Path,
    output_dir: Path,
    geometry: Optional[FrameGeometry] = None,
) -> int:
    """Write ``frame_<n>.npy`` for every depth frame in the session; returns the count."""
    session_dir = Path(session_dir)
    geometry = geometry or geometry_from_manifest(session_dir)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    written = 0
    for chunk in chunk_files(session_dir):
        for raw in iter_chunk_frames(chunk, geometry.frame_bytes):
            np.save(output_dir / f"frame_{written:06d}.npy", frame_to_array(raw, geometry))
            written += 1
        logger.debug("Unpacked %s", chunk.name)
    logger.info("Unpacked %d depth frame(s) from %s into %s", written, session_dir.name, output_dir)
    return written


__all__ = ["chunk_files", "geometry_from_manifest", "unpack_session"]
