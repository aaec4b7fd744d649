"""Synthetic RGB-D sensor used when no capture runtime is attached.

Produces a moving color gradient, a tilted-plane depth map (optionally with
padded rows) and a camera pose travelling on a circle, at a fixed rate.
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import AsyncIterator, Optional

import numpy as np

from rgbd_logger.core.logging_utils import LoggerLike, ensure_structured_logger
from rgbd_logger.modules.base.metadata import DeviceDescriptor, SensorSample
from rgbd_logger.modules.Depth.frame import DepthFrame, FrameGeometry
from rgbd_logger.modules.Pose.accumulator import pose_from_transform

STUB_DEPTH_SIZE = (256, 192)


class SyntheticSensor:
    """Deterministic stand-in for the camera + depth + tracking surface."""

    def __init__(
        self,
        *,
        color_resolution: tuple[int, int] = (640, 480),
        depth_resolution: tuple[int, int] = STUB_DEPTH_SIZE,
        fps: float = 30.0,
        row_padding: int = 0,
        realtime: bool = True,
        logger: LoggerLike = None,
    ) -> None:
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.color_resolution = color_resolution
        self.depth_resolution = depth_resolution
        self.fps = fps
        self.realtime = realtime
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

        width, height = depth_resolution
        self.depth_geometry = FrameGeometry(
            width=width,
            height=height,
            row_stride=width * 4 + int(row_padding),
            bytes_per_sample=4,
        )
        self._plane = self._build_plane()
        self._frame_index = 0

    @property
    def frame_index(self) -> int:
        return self._frame_index

    def describe(self, name: str = "synthetic-sensor") -> DeviceDescriptor:
        return DeviceDescriptor(
            name=name,
            model="SyntheticSensor",
            color_resolution=self.color_resolution,
            depth_resolution=self.depth_resolution,
            extras={"fps": self.fps},
        )

    # ------------------------------------------------------------------
    # Frame synthesis

    def _build_plane(self) -> np.ndarray:
        width, height = self.depth_resolution
        ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
        return 0.5 + 0.002 * xs + 0.003 * ys

    def _depth_frame(self, index: int, timestamp: float) -> DepthFrame:
        geometry = self.depth_geometry
        offset = np.float32(0.25 * math.sin(index / 15.0))
        buffer = np.zeros((geometry.height, geometry.row_stride), dtype=np.uint8)
        samples = (self._plane + offset).astype(np.float32)
        buffer[:, : geometry.row_bytes] = samples.view(np.uint8).reshape(geometry.height, geometry.row_bytes)
        return DepthFrame(buffer, geometry, timestamp)

    def _color_frame(self, index: int) -> np.ndarray:
        width, height = self.color_resolution
        frame = np.empty((height, width, 3), dtype=np.uint8)
        frame[:, :, 0] = (np.arange(width, dtype=np.uint16)[None, :] + index * 4) % 256
        frame[:, :, 1] = (np.arange(height, dtype=np.uint16)[:, None] + index * 2) % 256
        frame[:, :, 2] = (index * 8) % 256
        return frame

    def _pose(self, index: int) -> tuple[float, ...]:
        angle = index / self.fps * 0.5
        transform = np.eye(4)
        c, s = math.cos(angle), math.sin(angle)
        transform[:3, :3] = [[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]]
        transform[:3, 3] = [0.5 * math.cos(angle), 0.1, 0.5 * math.sin(angle)]
        return pose_from_transform(transform)

    def next_sample(self, timestamp: Optional[float] = None) -> SensorSample:
        index = self._frame_index
        self._frame_index += 1
        ts = time.monotonic() if timestamp is None else timestamp
        return SensorSample(
            timestamp=ts,
            color=self._color_frame(index),
            depth=self._depth_frame(index, ts),
            pose=self._pose(index),
        )

    async def stream(
        self,
        *,
        max_frames: Optional[int] = None,
        duration_s: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[SensorSample]:
        """Yield samples at ``fps`` until a limit is reached or ``stop_event`` is set."""
        interval = 1.0 / self.fps
        started = time.monotonic()
        produced = 0
        self._logger.info("Synthetic sensor streaming at %.1f fps", self.fps)
        while True:
            if max_frames is not None and produced >= max_frames:
                break
            if duration_s is not None and time.monotonic() - started >= duration_s:
                break
            if stop_event is not None and stop_event.is_set():
                break
            timestamp = started + produced * interval if not self.realtime else time.monotonic()
            yield self.next_sample(timestamp)
            produced += 1
            if self.realtime:
                delay = started + produced * interval - time.monotonic()
                await asyncio.sleep(max(0.0, delay))
            else:
                await asyncio.sleep(0)
        self._logger.info("Synthetic sensor stopped after %d frames", produced)


__all__ = ["STUB_DEPTH_SIZE", "SyntheticSensor"]
