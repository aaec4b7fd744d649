"""Streaming DEFLATE compressor writing into a fixed-capacity buffer.

Each open compressor owns one ``zlib`` compression context and one
destination ``bytearray``. Frames are fed whole; the compressed output
accumulates in the buffer until the owning chunk is sealed and the filled
prefix is written to disk in one bulk write.

The stream is raw DEFLATE (no zlib header or checksum), the same layout
Apple's ``COMPRESSION_ZLIB`` produces, so chunks recorded on device and
chunks recorded here decode the same way.
"""

from __future__ import annotations

import zlib
from typing import Any, Optional

from .errors import (
    CompressorError,
    CompressorInitError,
    CompressorOverrunError,
    CompressorStateError,
)

DEFLATE_WBITS = -15
DEFAULT_LEVEL = 6


def compress_bound(source_len: int) -> int:
    """Worst-case DEFLATE output for ``source_len`` input bytes (zlib's compressBound)."""
    return source_len + (source_len >> 12) + (source_len >> 14) + (source_len >> 25) + 13


def chunk_buffer_capacity(frame_bytes: int, max_frames: int) -> int:
    """Destination capacity that holds ``max_frames`` frames of ``frame_bytes`` each."""
    if frame_bytes <= 0 or max_frames <= 0:
        raise ValueError("frame_bytes and max_frames must be positive")
    return compress_bound(frame_bytes * max_frames)


class ChunkCompressor:
    """One streaming compression context bound to one destination buffer."""

    def __init__(self, capacity: int, *, level: int = DEFAULT_LEVEL) -> None:
        self._capacity = int(capacity)
        self._level = level
        self._buffer: Optional[bytearray] = None
        self._context: Any = None
        self._written = 0
        self._consumed = 0
        self._finalized = False

    # ------------------------------------------------------------------
    # Lifecycle

    def open(self) -> "ChunkCompressor":
        if self._capacity <= 0:
            raise CompressorInitError(f"Invalid destination capacity {self._capacity}")
        try:
            self._buffer = bytearray(self._capacity)
            self._context = zlib.compressobj(self._level, zlib.DEFLATED, DEFLATE_WBITS)
        except (MemoryError, zlib.error, ValueError) as exc:
            self.release()
            raise CompressorInitError(f"Cannot set up compressor ({self._capacity} bytes): {exc}") from exc
        self._written = 0
        self._consumed = 0
        self._finalized = False
        return self

    def release(self) -> None:
        """Free the buffer and the codec context. Safe to call repeatedly."""
        self._buffer = None
        self._context = None

    @property
    def is_open(self) -> bool:
        return self._context is not None and not self._finalized

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def bytes_consumed(self) -> int:
        return self._consumed

    def destination_bytes_written(self) -> int:
        return self._written

    def destination_view(self) -> memoryview:
        """Read-only view over the filled part of the destination buffer."""
        if self._buffer is None:
            raise CompressorStateError("Compressor buffer already released")
        return memoryview(self._buffer)[: self._written].toreadonly()

    # ------------------------------------------------------------------
    # Streaming

    def feed(self, payload: Any, length: Optional[int] = None) -> int:
        """Compress ``length`` bytes of ``payload``; returns bytes added to the buffer.

        The codec context is snapshotted before the call. When the output
        would not fit, the snapshot is restored so the rejected input never
        becomes part of the stream.
        """
        self._require_open()
        with memoryview(payload) as raw:
            source = raw if raw.ndim == 1 and raw.itemsize == 1 else raw.cast("B")
            size = source.nbytes if length is None else int(length)
            if size < 0 or size > source.nbytes:
                raise ValueError(f"Payload length {size} outside buffer of {source.nbytes} bytes")

            snapshot = self._context.copy()
            try:
                produced = self._context.compress(source[:size])
            except zlib.error as exc:
                self._context = snapshot
                raise CompressorError(f"Compression failed: {exc}") from exc

        end = self._written + len(produced)
        if end > self._capacity:
            self._context = snapshot
            raise CompressorOverrunError(
                f"Output of {len(produced)} bytes overruns buffer "
                f"({self._written}/{self._capacity} used)"
            )
        self._buffer[self._written:end] = produced
        self._written = end
        self._consumed += size
        return len(produced)

    def finalize(self) -> int:
        """Flush the codec and mark end of stream; returns total compressed bytes."""
        self._require_open()
        try:
            tail = self._context.flush(zlib.Z_FINISH)
        except zlib.error as exc:
            raise CompressorError(f"Finalize failed: {exc}") from exc
        end = self._written + len(tail)
        if end > self._capacity:
            raise CompressorOverrunError(
                f"Trailing {len(tail)} bytes overrun buffer ({self._written}/{self._capacity} used)"
            )
        self._buffer[self._written:end] = tail
        self._written = end
        self._finalized = True
        return self._written

    def _require_open(self) -> None:
        if self._context is None:
            raise CompressorStateError("Compressor is not open")
        if self._finalized:
            raise CompressorStateError("Compressor already finalized")


__all__ = [
    "ChunkCompressor",
    "DEFLATE_WBITS",
    "chunk_buffer_capacity",
    "compress_bound",
]
