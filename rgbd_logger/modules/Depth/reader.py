"""Decode depth chunk files back into frames."""

from __future__ import annotations

import zlib
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from .compressor import DEFLATE_WBITS
from .errors import ChunkFormatError
from .frame import FrameGeometry

_READ_SIZE = 1 << 20


def iter_chunk_frames(path: Path, frame_bytes: int) -> Iterator[bytes]:
    """Yield each frame's raw ``row_stride * height`` bytes in recorded order.

    Chunks carry no frame index; boundaries come from ``frame_bytes`` alone.
    """
    if frame_bytes <= 0:
        raise ValueError("frame_bytes must be positive")

    inflater = zlib.decompressobj(DEFLATE_WBITS)
    pending = bytearray()
    with open(path, "rb") as handle:
        while True:
            block = handle.read(_READ_SIZE)
            if not block:
                break
            try:
                pending += inflater.decompress(block)
            except zlib.error as exc:
                raise ChunkFormatError(f"{Path(path).name}: corrupt deflate stream ({exc})") from exc
            while len(pending) >= frame_bytes:
                yield bytes(pending[:frame_bytes])
                del pending[:frame_bytes]

    try:
        pending += inflater.flush()
    except zlib.error as exc:
        raise ChunkFormatError(f"{Path(path).name}: corrupt deflate stream ({exc})") from exc
    if not inflater.eof:
        raise ChunkFormatError(f"{Path(path).name}: truncated deflate stream")

    while len(pending) >= frame_bytes:
        yield bytes(pending[:frame_bytes])
        del pending[:frame_bytes]
    if pending:
        raise ChunkFormatError(
            f"{Path(path).name}: {len(pending)} trailing bytes do not form a whole "
            f"frame of {frame_bytes} bytes"
        )


def frame_to_array(raw: bytes, geometry: FrameGeometry, dtype: Optional[np.dtype] = None) -> np.ndarray:
    """Shape raw frame bytes as ``height x width``, cropping row padding."""
    if dtype is None:
        dtype = np.dtype({2: np.float16, 4: np.float32, 8: np.float64}.get(geometry.bytes_per_sample, np.uint8))
    dtype = np.dtype(dtype)
    rows = np.frombuffer(raw, dtype=np.uint8).reshape(geometry.height, geometry.row_stride)
    samples = rows[:, : geometry.row_bytes]
    return np.ascontiguousarray(samples).view(dtype).reshape(geometry.height, -1)


def read_chunk_frames(path: Path, geometry: FrameGeometry, dtype: Optional[np.dtype] = None) -> list[np.ndarray]:
    return [frame_to_array(raw, geometry, dtype) for raw in iter_chunk_frames(path, geometry.frame_bytes)]


__all__ = ["frame_to_array", "iter_chunk_frames", "read_chunk_frames"]
