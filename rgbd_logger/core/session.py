"""
Recording session state.

A session owns everything one recording interval produces: its output
directory, the video encoder, the depth recorder and the pose accumulator.
State only moves forward: IDLE -> RECORDING -> FINALIZING -> COMPLETE.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from rgbd_logger.modules.base.metadata import DeviceDescriptor
from rgbd_logger.modules.Depth.recorder import DepthRecorder
from rgbd_logger.modules.Pose.accumulator import PoseAccumulator
from rgbd_logger.modules.Video.encoder import VideoEncoder

from .errors import SessionStateError


class SessionState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    COMPLETE = "complete"


_TRANSITIONS = {
    SessionState.IDLE: SessionState.RECORDING,
    SessionState.RECORDING: SessionState.FINALIZING,
    SessionState.FINALIZING: SessionState.COMPLETE,
}


@dataclass
class RecordingSession:
    session_id: str
    session_dir: Path
    device: DeviceDescriptor
    video: Optional[VideoEncoder] = None
    depth: Optional[DepthRecorder] = None
    poses: PoseAccumulator = field(default_factory=PoseAccumulator)
    state: SessionState = SessionState.IDLE
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    frame_count: int = 0
    video_error: Optional[str] = None
    log_handler: Optional[logging.Handler] = field(default=None, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def _advance(self, target: SessionState) -> None:
        with self._lock:
            if _TRANSITIONS.get(self.state) is not target:
                raise SessionStateError(
                    f"Session {self.session_id}: cannot go from {self.state.value} to {target.value}"
                )
            self.state = target

    def mark_recording(self) -> None:
        self._advance(SessionState.RECORDING)
        self.started_at = datetime.now().astimezone()

    def mark_finalizing(self) -> None:
        """Stop accepting samples; from here on the capture fan-out is a no-op.

        Waits for a capture tick already inside :meth:`admit` to finish.
        """
        self._advance(SessionState.FINALIZING)
        self.ended_at = datetime.now().astimezone()
        self.poses.close()

    def mark_complete(self) -> None:
        self._advance(SessionState.COMPLETE)

    @property
    def is_recording(self) -> bool:
        return self.state is SessionState.RECORDING

    @contextmanager
    def admit(self) -> Iterator[bool]:
        """Hold the session in RECORDING for one capture tick.

        Yields False once the session has moved on. The frame counter is
        bumped only for admitted ticks.
        """
        with self._lock:
            if self.state is not SessionState.RECORDING:
                yield False
                return
            self.frame_count += 1
            yield True


__all__ = ["RecordingSession", "SessionState"]
