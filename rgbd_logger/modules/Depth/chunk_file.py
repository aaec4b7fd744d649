"""One depth chunk: output file, compressor and destination buffer as a single resource."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Callable, Optional

from rgbd_logger.core.paths import DEPTH_CHUNK_TEMPLATE

from .compressor import ChunkCompressor
from .errors import CompressorInitError, CompressorStateError


@dataclass(frozen=True, slots=True)
class ChunkDescriptor:
    """Immutable record of a sealed chunk."""

    path: Path
    index: int
    frame_count: int
    byte_size: int

    @property
    def name(self) -> str:
        return self.path.name


def chunk_path(directory: Path, index: int) -> Path:
    return Path(directory) / DEPTH_CHUNK_TEMPLATE.format(index=index)


class ChunkFile:
    """Owns the handle, codec context and buffer of the current chunk.

    Everything acquired by :meth:`open` is released exactly once by
    :meth:`close`, whichever of :meth:`seal`, :meth:`discard` or an
    exception gets there first.
    """

    def __init__(self, path: Path, index: int, handle: BinaryIO, compressor: ChunkCompressor) -> None:
        self.path = path
        self.index = index
        self.frame_count = 0
        self.byte_size = 0
        self._handle: Optional[BinaryIO] = handle
        self._compressor: Optional[ChunkCompressor] = compressor

    @classmethod
    def open(
        cls,
        directory: Path,
        index: int,
        capacity: int,
        *,
        compressor_factory: Callable[[int], ChunkCompressor] = ChunkCompressor,
    ) -> "ChunkFile":
        path = chunk_path(directory, index)
        compressor = compressor_factory(capacity)
        compressor.open()
        try:
            handle = open(path, "xb")
        except OSError as exc:
            compressor.release()
            raise CompressorInitError(f"Cannot create chunk file {path}: {exc}") from exc
        return cls(path, index, handle, compressor)

    def __enter__(self) -> "ChunkFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None and self.is_open:
            self.discard()
        else:
            self.close()

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def compressed_bytes(self) -> int:
        """Bytes currently held in the destination buffer."""
        if self._compressor is None:
            return self.byte_size
        return self._compressor.destination_bytes_written()

    # ------------------------------------------------------------------
    # Data path

    def compress(self, view: Any) -> None:
        """Feed one frame; ``frame_count`` only moves when the codec accepted it."""
        if self._compressor is None:
            raise CompressorStateError(f"Chunk {self.path.name} is closed")
        self._compressor.feed(view)
        self.frame_count += 1

    def seal(self) -> ChunkDescriptor:
        """Finalize the stream, write the buffer to disk in one go and close."""
        if self._compressor is None or self._handle is None:
            raise CompressorStateError(f"Chunk {self.path.name} is closed")
        try:
            self._compressor.finalize()
            with self._compressor.destination_view() as filled:
                written = self._handle.write(filled)
            self._handle.flush()
            os.fsync(self._handle.fileno())
        except BaseException:
            self.discard()
            raise
        self.close()
        self.byte_size = int(written)
        return ChunkDescriptor(self.path, self.index, self.frame_count, self.byte_size)

    def discard(self) -> None:
        """Close without writing and remove the file."""
        self.close()
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def close(self) -> None:
        compressor, self._compressor = self._compressor, None
        handle, self._handle = self._handle, None
        if compressor is not None:
            compressor.release()
        if handle is not None:
            handle.close()


__all__ = ["ChunkDescriptor", "ChunkFile", "chunk_path"]
