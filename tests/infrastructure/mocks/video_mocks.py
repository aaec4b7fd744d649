"""In-memory video encoder double.

Mirrors the ``VideoEncoder`` surface the session manager and finalizer use
(``start``, ``write_frame``, ``stop``, ``stop_async``) without touching a
codec. ``stop`` writes a small placeholder file so size reporting and
archiving see a real artifact.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from rgbd_logger.modules.Video.encoder import VideoInfo


class FakeVideoEncoder:
    def __init__(
        self,
        path: Path,
        resolution: tuple[int, int],
        fps: float,
        *,
        use_pyav: Optional[bool] = None,
        logger=None,
        fail_start: bool = False,
        fail_stop: bool = False,
    ) -> None:
        self.path = Path(path)
        self.resolution = resolution
        self.fps = fps
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.started = False
        self.stopped = False
        self.frames: list[float] = []

    def start(self) -> None:
        if self.fail_start:
            raise RuntimeError("no encoder available")
        self.started = True

    def write_frame(self, frame, timestamp: float) -> bool:
        if not self.started or self.stopped:
            return False
        self.frames.append(timestamp)
        return True

    def stop(self) -> VideoInfo:
        self.stopped = True
        if self.fail_stop:
            raise RuntimeError("container close failed")
        payload = b"\x00" * (16 * max(1, len(self.frames)))
        self.path.write_bytes(payload)
        duration = self.frames[-1] - self.frames[0] if len(self.frames) > 1 else 0.0
        return VideoInfo(
            path=self.path,
            frame_count=len(self.frames),
            frames_dropped=0,
            byte_size=len(payload),
            duration_s=duration,
            backend="fake",
        )

    async def stop_async(self) -> VideoInfo:
        return await asyncio.to_thread(self.stop)


class FakeVideoFactory:
    """Callable matching ``VideoEncoder``'s constructor; remembers what it built."""

    def __init__(self, *, fail_start: bool = False, fail_stop: bool = False) -> None:
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.encoders: list[FakeVideoEncoder] = []

    def __call__(self, path, resolution, fps, *, use_pyav=None, logger=None) -> FakeVideoEncoder:
        encoder = FakeVideoEncoder(
            path, resolution, fps,
            use_pyav=use_pyav,
            logger=logger,
            fail_start=self.fail_start,
            fail_stop=self.fail_stop,
        )
        self.encoders.append(encoder)
        return encoder

    @property
    def last(self) -> Optional[FakeVideoEncoder]:
        return self.encoders[-1] if self.encoders else None
