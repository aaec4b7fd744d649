"""Depth frame buffers with explicit, validated row strides."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np


@dataclass(frozen=True, slots=True)
class FrameGeometry:
    """Layout of one depth buffer: ``height`` rows of ``row_stride`` bytes."""

    width: int
    height: int
    row_stride: int
    bytes_per_sample: int = 4

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid depth frame size {self.width}x{self.height}")
        if self.bytes_per_sample <= 0:
            raise ValueError(f"Invalid bytes_per_sample {self.bytes_per_sample}")
        if self.row_stride < self.width * self.bytes_per_sample:
            raise ValueError(
                f"Row stride {self.row_stride} is smaller than "
                f"{self.width} x {self.bytes_per_sample} bytes"
            )

    @classmethod
    def packed(cls, width: int, height: int, bytes_per_sample: int = 4) -> "FrameGeometry":
        return cls(width=width, height=height, row_stride=width * bytes_per_sample,
                   bytes_per_sample=bytes_per_sample)

    @property
    def row_bytes(self) -> int:
        """Bytes of sample data per row, excluding padding."""
        return self.width * self.bytes_per_sample

    @property
    def frame_bytes(self) -> int:
        """Bytes fed to the compressor per frame, padding included."""
        return self.row_stride * self.height

    @property
    def is_packed(self) -> bool:
        return self.row_stride == self.row_bytes

    def to_dict(self) -> dict[str, int]:
        return {
            "width": self.width,
            "height": self.height,
            "row_stride": self.row_stride,
            "bytes_per_sample": self.bytes_per_sample,
        }


class DepthFrame:
    """A depth buffer paired with its geometry.

    The buffer may be any bytes-like object (``bytes``, ``bytearray``,
    ``memoryview``, contiguous ``numpy`` array). Its length is checked
    against ``row_stride * height`` up front so the compressor never reads
    past the end of the capture buffer.
    """

    __slots__ = ("_data", "geometry", "timestamp")

    def __init__(self, data: Any, geometry: FrameGeometry, timestamp: Optional[float] = None) -> None:
        with memoryview(data) as view:
            nbytes = view.nbytes
            contiguous = view.c_contiguous
        if not contiguous:
            raise ValueError("Depth buffer must be C-contiguous")
        if nbytes < geometry.frame_bytes:
            raise ValueError(
                f"Depth buffer holds {nbytes} bytes, geometry needs {geometry.frame_bytes}"
            )
        self._data = data
        self.geometry = geometry
        self.timestamp = timestamp

    @classmethod
    def from_array(cls, array: np.ndarray, timestamp: Optional[float] = None) -> "DepthFrame":
        """Wrap a 2-D depth array; non-contiguous views are packed first."""
        if array.ndim != 2:
            raise ValueError(f"Depth array must be 2-D, got shape {array.shape}")
        packed = np.ascontiguousarray(array)
        geometry = FrameGeometry(
            width=int(packed.shape[1]),
            height=int(packed.shape[0]),
            row_stride=int(packed.strides[0]),
            bytes_per_sample=int(packed.itemsize),
        )
        return cls(packed, geometry, timestamp)

    @property
    def nbytes(self) -> int:
        return self.geometry.frame_bytes

    def payload(self) -> memoryview:
        """Read-only byte view of exactly ``row_stride * height`` bytes.

        Use it as a context manager so the view is released as soon as the
        compression call returns.
        """
        view = memoryview(self._data)
        if view.ndim != 1 or view.itemsize != 1:
            view = view.cast("B")
        return view[: self.geometry.frame_bytes].toreadonly()


__all__ = ["DepthFrame", "FrameGeometry"]
