"""Depth stream exceptions."""

from __future__ import annotations


class CompressorError(Exception):
    """A single compression call failed; the frame is dropped."""


class CompressorInitError(CompressorError):
    """Buffer allocation, codec context setup or chunk file creation failed."""


class CompressorOverrunError(CompressorError):
    """The codec produced more output than the destination buffer can hold."""


class CompressorStateError(CompressorError):
    """Operation requested on a compressor that is not open."""


class FrameDropped(CompressorError):
    """A depth frame was not compressed and is excluded from every counter."""

    def __init__(self, message: str, reason: str = "compression") -> None:
        super().__init__(message)
        self.reason = reason


class ChunkFormatError(ValueError):
    """A chunk file could not be split back into whole frames."""


__all__ = [
    "ChunkFormatError",
    "CompressorError",
    "CompressorInitError",
    "CompressorOverrunError",
    "CompressorStateError",
    "FrameDropped",
]
