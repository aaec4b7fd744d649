"""
Color video encoder for recording sessions.

Supports PyAV (preferred) with OpenCV fallback.

Uses a long-lived worker thread with bounded queue for backpressure, so the
capture callback never waits on the codec.
"""
from __future__ import annotations

import asyncio
import os
import queue
import threading
import time
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import Any, Optional

import numpy as np

from rgbd_logger.core.logging_utils import LoggerLike, ensure_structured_logger

try:
    import cv2
    _HAS_CV2 = True
except ImportError:
    cv2 = None
    _HAS_CV2 = False

try:
    import av
    _HAS_PYAV = True
except Exception:
    av = None
    _HAS_PYAV = False


# Default queue size - provides ~1 second of buffering at 30fps
_DEFAULT_QUEUE_SIZE = 30


@dataclass(slots=True)
class VideoInfo:
    """Outcome of one encoded video file."""
    path: Path
    frame_count: int
    frames_dropped: int
    byte_size: Optional[int]
    duration_s: float = 0.0
    backend: str = ""
    error: Optional[str] = None


@dataclass(slots=True)
class _FrameItem:
    """Frame data queued for encoding."""
    data: np.ndarray
    timestamp: float


class _EncodeWorker:
    """Long-lived encoding thread with bounded queue.

    Processes frames from a queue in a dedicated thread, providing
    clean backpressure when encoding can't keep up with capture.
    """

    def __init__(self, encoder: "VideoEncoder", queue_size: int = _DEFAULT_QUEUE_SIZE) -> None:
        self._encoder = encoder
        self._queue: queue.Queue[Optional[_FrameItem]] = queue.Queue(maxsize=queue_size)
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._error: Optional[Exception] = None
        self._frames_dropped = 0
        self._lock = threading.Lock()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._running = True
        self._error = None
        self._frames_dropped = 0
        self._thread = threading.Thread(target=self._run, name="video-encode-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal shutdown and wait for every queued frame to be encoded."""
        if not self._thread:
            return
        self._running = False
        # Blocking put: the worker keeps draining, so room always frees up
        self._queue.put(None)
        self._thread.join(timeout=timeout)
        self._thread = None

    def submit(self, frame: np.ndarray, timestamp: float) -> bool:
        """Queue a frame. Returns False when the queue is full (backpressure)."""
        if not self._running:
            return False
        try:
            self._queue.put_nowait(_FrameItem(data=frame, timestamp=timestamp))
            return True
        except queue.Full:
            with self._lock:
                self._frames_dropped += 1
            return False

    @property
    def frames_dropped(self) -> int:
        with self._lock:
            return self._frames_dropped

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                break
            try:
                self._encoder._write_frame_internal(item.data, timestamp=item.timestamp)
            except Exception as e:
                self._error = e
                self._encoder._record_failure(e)


class VideoEncoder:
    """MP4 video encoder fed from the capture callback.

    Frames are submitted via write_frame() and encoded on a dedicated
    worker thread. stop() drains the queue, closes the container and
    reports what was written.
    """

    def __init__(
        self,
        path: Path,
        resolution: tuple[int, int],
        fps: float,
        *,
        use_pyav: Optional[bool] = None,
        queue_size: Optional[int] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.path = Path(path)
        self._resolution = (int(resolution[0]), int(resolution[1]))
        self._fps = float(fps)
        self._use_pyav = use_pyav if use_pyav is not None else _HAS_PYAV
        self._queue_size = queue_size if queue_size is not None else _DEFAULT_QUEUE_SIZE
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

        # Encoder state
        self._container: Any = None
        self._stream: Any = None
        self._writer: Any = None
        self._kind: str = ""

        self._frame_count = 0
        self._frames_failed = 0
        self._first_ts: Optional[float] = None
        self._last_ts: Optional[float] = None
        self._start_time_ns: Optional[int] = None

        # Periodic flush
        self._flush_interval = 600
        self._frames_since_flush = 0

        self._worker: Optional[_EncodeWorker] = None
        self._info: Optional[VideoInfo] = None
        self._last_error: Optional[str] = None

    @property
    def frame_count(self) -> int:
        """Number of frames successfully written to the container."""
        return self._frame_count

    @property
    def frames_dropped(self) -> int:
        dropped = self._frames_failed
        if self._worker:
            dropped += self._worker.frames_dropped
        return dropped

    @property
    def queue_depth(self) -> int:
        if self._worker:
            return self._worker.queue_depth
        return 0

    @property
    def backend(self) -> str:
        return self._kind

    @property
    def is_running(self) -> bool:
        return self._worker is not None

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> None:
        """Open the container and start the worker thread."""
        if self._worker is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._start_time_ns = time.monotonic_ns()

        if self._use_pyav and _HAS_PYAV:
            self._start_pyav()
        else:
            self._start_opencv()

        self._worker = _EncodeWorker(self, queue_size=self._queue_size)
        self._worker.start()

    def _start_pyav(self) -> None:
        self._container = av.open(str(self.path), "w")
        fps_fraction = Fraction(self._fps).limit_denominator(1000)

        self._stream = self._container.add_stream("mpeg4", rate=fps_fraction)
        self._stream.width = self._resolution[0]
        self._stream.height = self._resolution[1]
        self._stream.pix_fmt = "yuv420p"

        self._logger.info("PyAV encoder: %s %dx%d @ %s fps",
                          self.path.name, self._resolution[0], self._resolution[1], fps_fraction)
        self._kind = "pyav"

    def _start_opencv(self) -> None:
        if not _HAS_CV2:
            raise RuntimeError("OpenCV not available for video encoding")
        fourcc = cv2.VideoWriter_fourcc(*"mp4v")
        self._writer = cv2.VideoWriter(str(self.path), fourcc, self._fps, self._resolution)
        if not self._writer.isOpened():
            self._writer = None
            raise RuntimeError(f"OpenCV could not open {self.path} for writing")
        self._logger.info("OpenCV encoder: %s %dx%d @ %.2f fps",
                          self.path.name, self._resolution[0], self._resolution[1], self._fps)
        self._kind = "opencv"

    def write_frame(self, frame: np.ndarray, timestamp: float) -> bool:
        """Submit a BGR frame for encoding (non-blocking).

        Returns True if the frame was queued, False under backpressure or
        when the encoder is not running.
        """
        worker = self._worker
        if not worker:
            return False
        return worker.submit(frame, timestamp)

    def stop(self) -> VideoInfo:
        """Drain queued frames, finalize the container and report the result (blocking)."""
        if self._info is not None:
            return self._info

        dropped_backpressure = 0
        if self._worker:
            self._worker.stop()
            dropped_backpressure = self._worker.frames_dropped
            self._worker = None

        if self._kind == "pyav":
            self._finalize_pyav()
        else:
            self._finalize_opencv()

        duration = 0.0
        if self._first_ts is not None and self._last_ts is not None and self._frame_count > 1:
            duration = max(0.0, self._last_ts - self._first_ts)
        size = None
        try:
            size = self.path.stat().st_size
        except OSError:
            pass

        self._info = VideoInfo(
            path=self.path,
            frame_count=self._frame_count,
            frames_dropped=dropped_backpressure + self._frames_failed,
            byte_size=size,
            duration_s=duration,
            backend=self._kind,
            error=self._last_error,
        )
        self._logger.info("Video finalized: %s (%d frames, %d dropped, %s bytes)",
                          self.path.name, self._info.frame_count, self._info.frames_dropped, size)
        return self._info

    async def stop_async(self) -> VideoInfo:
        return await asyncio.to_thread(self.stop)

    # ------------------------------------------------------------------
    # Worker side

    def _write_frame_internal(self, frame: np.ndarray, *, timestamp: float) -> bool:
        """Encode a single frame (blocking, called by worker thread)."""
        frame = self._conform(frame)
        if frame is None:
            self._frames_failed += 1
            return False

        next_frame_num = self._frame_count + 1
        if self._kind == "pyav":
            success = self._encode_pyav(frame, next_frame_num)
        else:
            success = self._encode_opencv(frame)

        if not success:
            self._frames_failed += 1
            return False

        self._frame_count = next_frame_num
        if self._first_ts is None:
            self._first_ts = timestamp
        self._last_ts = timestamp
        return True

    def _record_failure(self, exc: Exception) -> None:
        self._frames_failed += 1
        self._last_error = str(exc)
        self._logger.warning("Video frame failed to encode: %s", exc)

    def _conform(self, frame: np.ndarray) -> Optional[np.ndarray]:
        """Return ``frame`` as HxWx3 uint8 at the encoder resolution, or None."""
        if frame.ndim == 2:
            frame = np.repeat(frame[:, :, None], 3, axis=2)
        if frame.ndim != 3 or frame.shape[2] != 3:
            return None
        if frame.dtype != np.uint8:
            frame = np.clip(frame, 0, 255).astype(np.uint8)
        width, height = self._resolution
        if frame.shape[1] != width or frame.shape[0] != height:
            if not _HAS_CV2:
                return None
            frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
        return np.ascontiguousarray(frame)

    def _encode_pyav(self, frame: np.ndarray, frame_num: int) -> bool:
        """Encode frame with PyAV. Returns True if frame was successfully muxed."""
        try:
            av_frame = av.VideoFrame.from_ndarray(frame, format="bgr24")
        except Exception as exc:
            self._last_error = str(exc)
            return False

        # Frame index as PTS; time_base follows the stream rate (1/fps)
        av_frame.pts = frame_num - 1

        try:
            for pkt in self._stream.encode(av_frame):
                self._container.mux(pkt)
        except Exception as exc:
            self._last_error = str(exc)
            return False

        self._frames_since_flush += 1
        if self._frames_since_flush >= self._flush_interval:
            self._frames_since_flush = 0
            self._fsync()
        return True

    def _encode_opencv(self, frame: np.ndarray) -> bool:
        if not self._writer or not self._writer.isOpened():
            return False
        try:
            self._writer.write(frame)
        except Exception as exc:
            self._last_error = str(exc)
            return False

        self._frames_since_flush += 1
        if self._frames_since_flush >= self._flush_interval:
            self._frames_since_flush = 0
            self._fsync()
        return True

    def _fsync(self) -> None:
        try:
            fd = os.open(self.path, os.O_RDONLY)
            try:
                os.fsync(fd)
            finally:
                os.close(fd)
        except OSError as exc:
            self._logger.debug("fsync failed for %s: %s", self.path.name, exc)

    def _finalize_pyav(self) -> None:
        if not self._container:
            return
        try:
            for pkt in self._stream.encode(None):
                self._container.mux(pkt)
        except Exception as exc:
            self._last_error = str(exc)
            self._logger.warning("Flushing PyAV encoder failed: %s", exc)
        try:
            self._container.close()
        except Exception as exc:
            self._last_error = str(exc)
            self._logger.warning("Closing %s failed: %s", self.path.name, exc)
        self._container = None
        self._stream = None

    def _finalize_opencv(self) -> None:
        if self._writer:
            self._writer.release()
            self._writer = None


__all__ = ["VideoEncoder", "VideoInfo"]
