"""Free-space preflight sized to the session about to be recorded.

While a session is archived its artifacts exist three times: in the
session directory, in the intermediate tar and in the tar.gz. The reserve
(``disk_threshold_gb``) must still be free at that peak.
"""

from __future__ import annotations

import asyncio
import math
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from rgbd_logger.core.logging_utils import LoggerLike, ensure_structured_logger
from rgbd_logger.modules.Depth.compressor import chunk_buffer_capacity
from rgbd_logger.modules.Depth.frame import FrameGeometry

# MPEG-4 at default quality stays well below this
VIDEO_BITS_PER_PIXEL = 0.2
# 23 BSON doubles per record, each with type byte and index key
FRAME_RECORD_BYTES = 23 * 16


class DiskHealth(Enum):
    OK = "ok"
    BLOCKED = "blocked"


@dataclass(frozen=True, slots=True)
class SessionBudget:
    """Worst-case bytes one session writes before it is archived."""

    frames: int
    depth_bytes: int
    video_bytes: int
    frame_data_bytes: int

    @property
    def artifact_bytes(self) -> int:
        return self.depth_bytes + self.video_bytes + self.frame_data_bytes

    @property
    def required_bytes(self) -> int:
        return 3 * self.artifact_bytes


def estimate_session_budget(
    frames: int,
    *,
    max_frames_per_chunk: int,
    depth_geometry: Optional[FrameGeometry] = None,
    video_resolution: Optional[tuple[int, int]] = None,
) -> SessionBudget:
    """Budget ``frames`` capture ticks.

    Depth is bounded exactly: every chunk can never exceed its buffer
    capacity, including the shorter last chunk.
    """
    frames = max(0, int(frames))
    depth_bytes = 0
    if depth_geometry is not None and frames:
        full, rest = divmod(frames, max_frames_per_chunk)
        depth_bytes = full * chunk_buffer_capacity(depth_geometry.frame_bytes, max_frames_per_chunk)
        if rest:
            depth_bytes += chunk_buffer_capacity(depth_geometry.frame_bytes, rest)

    video_bytes = 0
    if video_resolution is not None:
        width, height = video_resolution
        video_bytes = frames * math.ceil(width * height * VIDEO_BITS_PER_PIXEL / 8)

    return SessionBudget(
        frames=frames,
        depth_bytes=depth_bytes,
        video_bytes=video_bytes,
        frame_data_bytes=frames * FRAME_RECORD_BYTES,
    )


@dataclass(slots=True)
class DiskStatus:
    state: DiskHealth
    free_bytes: int
    required_bytes: int
    reserve_bytes: int
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is DiskHealth.OK

    def describe(self) -> str:
        return (f"{self.free_bytes / 1e9:.2f} GB free, session needs {self.required_bytes / 1e9:.2f} GB "
                f"plus a {self.reserve_bytes / 1e9:.2f} GB reserve ({self.reason or self.state.value})")


class DiskGuard:
    """Refuses to start a session the recording volume cannot hold."""

    def __init__(self, *, reserve_gb: float, logger: LoggerLike = None) -> None:
        self.reserve_bytes = int(max(0.0, reserve_gb) * 1_000_000_000)
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

    async def check_before_start(self, data_dir: Path, budget: Optional[SessionBudget] = None) -> DiskStatus:
        volume = Path(data_dir)
        # data_dir may not exist before the first session
        while not volume.exists() and volume.parent != volume:
            volume = volume.parent
        required = budget.required_bytes if budget is not None else 0

        try:
            usage = await asyncio.to_thread(shutil.disk_usage, volume)
        except OSError as exc:
            status = DiskStatus(DiskHealth.BLOCKED, 0, required, self.reserve_bytes,
                                reason=f"cannot read usage of {volume}: {exc}")
        else:
            free = int(usage.free)
            if free < self.reserve_bytes:
                reason = "below_reserve"
            elif free - required < self.reserve_bytes:
                reason = "session_too_large"
            else:
                reason = None
            status = DiskStatus(DiskHealth.OK if reason is None else DiskHealth.BLOCKED,
                                free, required, self.reserve_bytes, reason=reason)

        if status.ok:
            self._logger.debug("Disk preflight ok for %s: %s", volume, status.describe())
        else:
            self._logger.warning("Disk preflight blocked %s: %s", volume, status.describe())
        return status


__all__ = ["DiskGuard", "DiskHealth", "DiskStatus", "SessionBudget", "estimate_session_budget"]
