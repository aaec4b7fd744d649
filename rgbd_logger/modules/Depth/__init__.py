"""Depth stream: chunked DEFLATE compression on a dedicated worker."""

from .chunk_file import ChunkDescriptor, ChunkFile
from .compressor import ChunkCompressor, chunk_buffer_capacity
from .errors import (
    ChunkFormatError,
    CompressorError,
    CompressorInitError,
    CompressorOverrunError,
    CompressorStateError,
    FrameDropped,
)
from .frame import DepthFrame, FrameGeometry
from .reader import iter_chunk_frames, read_chunk_frames
from .recorder import DepthRecorder, DepthState

__all__ = [
    "ChunkCompressor",
    "ChunkDescriptor",
    "ChunkFile",
    "ChunkFormatError",
    "CompressorError",
    "CompressorInitError",
    "CompressorOverrunError",
    "CompressorStateError",
    "DepthFrame",
    "DepthRecorder",
    "DepthState",
    "FrameDropped",
    "FrameGeometry",
    "chunk_buffer_capacity",
    "iter_chunk_frames",
    "read_chunk_frames",
]
