"""
Depth recording controller.

All compressor state (buffer, codec context, file handle, counters) is owned
by one worker thread. Producers only hand frames over; ``start``, every
frame, chunk rotation and ``finish`` run on the worker in submission order,
so the non-reentrant codec state is never touched from two threads.

Rotation seals the current chunk (finalize, one bulk write, fsync, close)
before the next chunk is opened, so at most one chunk is live at any time.
"""
from __future__ import annotations

import asyncio
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from rgbd_logger.core.errors import SessionStateError
from rgbd_logger.core.logging_utils import LoggerLike, ensure_structured_logger

from .chunk_file import ChunkDescriptor, ChunkFile
from .compressor import ChunkCompressor, chunk_buffer_capacity
from .errors import CompressorError, CompressorInitError, FrameDropped
from .frame import DepthFrame, FrameGeometry

DEFAULT_MAX_FRAMES_PER_CHUNK = 250
# ~8 seconds of buffering at 30 fps
DEFAULT_QUEUE_SIZE = 240


class DepthState(Enum):
    NOT_STARTED = "not_started"
    OPEN = "open"
    ROTATING = "rotating"
    CLOSED = "closed"


@dataclass(slots=True)
class DepthSessionContext:
    """Per-session worker state. Only the worker thread mutates it."""

    output_dir: Path
    geometry: Optional[FrameGeometry] = None
    capacity: int = 0
    current: Optional[ChunkFile] = None
    next_index: int = 0
    descriptors: list[ChunkDescriptor] = field(default_factory=list)
    frames_accepted: int = 0
    live_chunks: int = 0
    peak_live_chunks: int = 0
    init_error: Optional[BaseException] = None


@dataclass(slots=True)
class _Command:
    kind: str
    payload: Any = None
    future: Optional[Future] = None


class _DepthWorker:
    """Single ordered worker thread draining the command queue."""

    def __init__(self, recorder: "DepthRecorder") -> None:
        self._recorder = recorder
        self._queue: queue.Queue[Optional[_Command]] = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="depth-worker", daemon=True)
        self._thread.start()

    def put(self, command: Optional[_Command]) -> None:
        self._queue.put_nowait(command)

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._thread is None:
            return
        self._queue.put_nowait(None)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)
        self._thread = None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while True:
            command = self._queue.get()
            if command is None:
                break
            self._recorder._dispatch(command)


class DepthRecorder:
    """Streams depth frames into size-bounded DEFLATE chunk files."""

    def __init__(
        self,
        max_frames_per_chunk: int = DEFAULT_MAX_FRAMES_PER_CHUNK,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        *,
        compressor_factory: Callable[[int], ChunkCompressor] = ChunkCompressor,
        logger: LoggerLike = None,
    ) -> None:
        if max_frames_per_chunk <= 0:
            raise ValueError("max_frames_per_chunk must be positive")
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")
        self._max_frames = int(max_frames_per_chunk)
        self._queue_size = int(queue_size)
        self._compressor_factory = compressor_factory
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

        self._state = DepthState.NOT_STARTED
        self._ctx: Optional[DepthSessionContext] = None
        self._worker: Optional[_DepthWorker] = None
        self._finish_future: Optional[Future] = None
        self._aborting = False

        self._lock = threading.Lock()
        self._pending = 0
        self._frames_submitted = 0
        self._frames_dropped = 0
        self._drop_counts: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Properties

    @property
    def state(self) -> DepthState:
        with self._lock:
            return self._state

    @property
    def max_frames_per_chunk(self) -> int:
        return self._max_frames

    @property
    def frames_submitted(self) -> int:
        with self._lock:
            return self._frames_submitted

    @property
    def frames_accepted(self) -> int:
        return self._ctx.frames_accepted if self._ctx else 0

    @property
    def frames_dropped(self) -> int:
        with self._lock:
            return self._frames_dropped

    @property
    def drop_counts(self) -> dict[str, int]:
        """Dropped frames keyed by reason (backpressure, compression, geometry, ...)."""
        with self._lock:
            return dict(self._drop_counts)

    @property
    def queue_depth(self) -> int:
        with self._lock:
            return self._pending

    @property
    def peak_live_chunks(self) -> int:
        return self._ctx.peak_live_chunks if self._ctx else 0

    @property
    def init_error(self) -> Optional[BaseException]:
        return self._ctx.init_error if self._ctx else None

    @property
    def geometry(self) -> Optional[FrameGeometry]:
        return self._ctx.geometry if self._ctx else None

    @property
    def output_dir(self) -> Optional[Path]:
        return self._ctx.output_dir if self._ctx else None

    # ------------------------------------------------------------------
    # Public API (any thread)

    def start(self, output_dir: Path, geometry: Optional[FrameGeometry] = None) -> Future:
        """Reset counters and open chunk #0 on the worker.

        When ``geometry`` is omitted the first submitted frame declares it.
        A :class:`CompressorInitError` is delivered through the returned future.
        """
        with self._lock:
            if self._state in (DepthState.OPEN, DepthState.ROTATING):
                raise SessionStateError("Depth recorder already started")
            previous = self._worker
        if previous is not None:
            previous.stop()

        future: Future = Future()
        worker = _DepthWorker(self)
        worker.start()
        with self._lock:
            self._pending = 0
            self._frames_submitted = 0
            self._frames_dropped = 0
            self._drop_counts = {}
            self._ctx = DepthSessionContext(output_dir=Path(output_dir))
            self._finish_future = None
            self._aborting = False
            self._state = DepthState.OPEN
            self._worker = worker
            worker.put(_Command("start", geometry, future))
        self._logger.info("Depth recording started -> %s (max %d frames/chunk)",
                          output_dir, self._max_frames)
        return future

    def submit(self, frame: DepthFrame) -> bool:
        """Hand one frame to the worker. Never blocks.

        Returns False when the frame was not queued: recorder not open or
        already finishing, depth disabled by an init failure, or the queue
        is at capacity.
        """
        with self._lock:
            if self._ctx is None:
                return False
            self._frames_submitted += 1
            if self._worker is None or self._state not in (DepthState.OPEN, DepthState.ROTATING):
                # Arrived after finish() or shutdown() took the worker.
                self._count_drop_locked("closed")
                return False
            if self._ctx.init_error is not None:
                self._count_drop_locked("init_error")
                return False
            if self._pending >= self._queue_size:
                self._count_drop_locked("backpressure")
                dropped = self._frames_dropped
            else:
                self._pending += 1
                # Queued under the lock so it can never land behind the stop sentinel.
                self._worker.put(_Command("frame", frame))
                return True
        if dropped == 1 or dropped % 100 == 0:
            self._logger.warning("Depth queue full, %d frame(s) dropped so far", dropped)
        return False

    def finish(self) -> Future:
        """Seal the last chunk and resolve with every descriptor of the session."""
        with self._lock:
            if self._finish_future is not None:
                return self._finish_future
            if self._state is DepthState.NOT_STARTED or self._worker is None:
                raise SessionStateError("Depth recorder was never started")
            future: Future = Future()
            self._finish_future = future
            worker, self._worker = self._worker, None
            worker.put(_Command("finish", None, future))
            worker.put(None)
        return future

    async def finish_async(self) -> list[ChunkDescriptor]:
        return await asyncio.wrap_future(self.finish())

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Abnormal teardown: queued frames and unflushed bytes are lost.

        Chunks sealed before the call stay on disk untouched.
        """
        with self._lock:
            worker, self._worker = self._worker, None
            if worker is None:
                return
            self._aborting = True
            worker.put(_Command("abort"))
        worker.stop(timeout=timeout)
        with self._lock:
            if self._finish_future is None:
                self._finish_future = Future()
                self._finish_future.set_result(list(self._ctx.descriptors) if self._ctx else [])

    # ------------------------------------------------------------------
    # Worker side

    def _dispatch(self, command: _Command) -> None:
        try:
            if command.kind == "frame":
                with self._lock:
                    self._pending -= 1
                if self._aborting:
                    return
                try:
                    self._handle_frame(command.payload)
                except Exception:
                    self._count_drop("error")
                    raise
            elif command.kind == "start":
                self._handle_start(command.payload)
                command.future.set_result(None)
            elif command.kind == "finish":
                command.future.set_result(self._handle_finish())
            elif command.kind == "abort":
                self._handle_abort()
        except BaseException as exc:
            if command.future is not None and not command.future.done():
                command.future.set_exception(exc)
            else:
                self._logger.exception("Depth worker failed on %s command", command.kind)

    def _handle_start(self, geometry: Optional[FrameGeometry]) -> None:
        ctx = self._ctx
        ctx.output_dir.mkdir(parents=True, exist_ok=True)
        if geometry is not None:
            self._open_first_chunk(geometry)

    def _handle_frame(self, frame: DepthFrame) -> None:
        ctx = self._ctx
        try:
            if ctx.init_error is not None:
                raise FrameDropped("depth disabled after init failure", reason="init_error")
            try:
                if ctx.geometry is None:
                    self._open_first_chunk(frame.geometry)
                elif frame.geometry != ctx.geometry:
                    raise FrameDropped(
                        f"geometry {frame.geometry} differs from session geometry {ctx.geometry}",
                        reason="geometry",
                    )
                if ctx.current is not None and ctx.current.frame_count >= self._max_frames:
                    self._rotate()
            except CompressorInitError as exc:
                raise FrameDropped(str(exc), reason="init_error") from exc
            if ctx.current is None:
                raise FrameDropped("no open chunk", reason="init_error")
            self._compress(frame)
        except FrameDropped as exc:
            self._count_drop(exc.reason)
            if exc.reason == "geometry":
                self._logger.warning("Rejected depth frame: %s", exc)
            else:
                self._logger.debug("Depth frame dropped: %s", exc)
            return
        ctx.frames_accepted += 1

    def _compress(self, frame: DepthFrame) -> None:
        current = self._ctx.current
        try:
            with frame.payload() as view:
                current.compress(view)
        except CompressorError as exc:
            self._logger.warning("Dropping depth frame for %s: %s", current.path.name, exc)
            raise FrameDropped(str(exc)) from exc

    def _rotate(self) -> None:
        self._set_state(DepthState.ROTATING)
        try:
            self._seal_current()
            self._open_chunk()
        finally:
            self._set_state(DepthState.OPEN)

    def _handle_finish(self) -> list[ChunkDescriptor]:
        ctx = self._ctx
        current = ctx.current
        if current is not None:
            if current.frame_count == 0:
                ctx.current = None
                self._release(current, discard=True)
                self._logger.debug("Discarded empty chunk %s", current.path.name)
            else:
                self._seal_current()
        self._set_state(DepthState.CLOSED)
        total = sum(d.frame_count for d in ctx.descriptors)
        self._logger.info("Depth recording finished: %d chunk(s), %d frame(s), %d dropped",
                          len(ctx.descriptors), total, self.frames_dropped)
        return list(ctx.descriptors)

    def _handle_abort(self) -> None:
        ctx = self._ctx
        current = ctx.current
        if current is not None:
            ctx.current = None
            self._release(current, discard=True)
        self._set_state(DepthState.CLOSED)
        self._logger.warning("Depth recording aborted; %d sealed chunk(s) kept", len(ctx.descriptors))

    # ------------------------------------------------------------------
    # Chunk bookkeeping (worker only)

    def _open_first_chunk(self, geometry: FrameGeometry) -> None:
        ctx = self._ctx
        ctx.geometry = geometry
        ctx.capacity = chunk_buffer_capacity(geometry.frame_bytes, self._max_frames)
        self._logger.info("Depth geometry %dx%d stride=%d, chunk buffer %d bytes",
                          geometry.width, geometry.height, geometry.row_stride, ctx.capacity)
        self._open_chunk()

    def _open_chunk(self) -> None:
        ctx = self._ctx
        try:
            chunk = ChunkFile.open(
                ctx.output_dir,
                ctx.next_index,
                ctx.capacity,
                compressor_factory=self._compressor_factory,
            )
        except CompressorInitError as exc:
            ctx.init_error = exc
            self._logger.error("Depth recording disabled: %s", exc)
            raise
        ctx.current = chunk
        ctx.next_index += 1
        ctx.live_chunks += 1
        ctx.peak_live_chunks = max(ctx.peak_live_chunks, ctx.live_chunks)
        self._logger.debug("Opened %s", chunk.path.name)

    def _seal_current(self) -> None:
        ctx = self._ctx
        chunk, ctx.current = ctx.current, None
        try:
            descriptor = chunk.seal()
        except Exception as exc:
            # The chunk's frames never reached disk.
            ctx.frames_accepted -= chunk.frame_count
            self._count_drop("seal", chunk.frame_count)
            self._logger.error("Failed to seal %s, %d frame(s) lost: %s",
                               chunk.path.name, chunk.frame_count, exc)
        else:
            ctx.descriptors.append(descriptor)
            self._logger.info("Sealed %s: %d frames, %d bytes",
                              descriptor.name, descriptor.frame_count, descriptor.byte_size)
        finally:
            ctx.live_chunks -= 1

    def _release(self, chunk: ChunkFile, *, discard: bool) -> None:
        if discard:
            chunk.discard()
        else:
            chunk.close()
        self._ctx.live_chunks -= 1

    def _set_state(self, state: DepthState) -> None:
        with self._lock:
            self._state = state

    def _count_drop(self, reason: str, count: int = 1) -> None:
        with self._lock:
            self._count_drop_locked(reason, count)

    def _count_drop_locked(self, reason: str, count: int = 1) -> None:
        self._frames_dropped += count
        self._drop_counts[reason] = self._drop_counts.get(reason, 0) + count


__all__ = [
    "DEFAULT_MAX_FRAMES_PER_CHUNK",
    "DEFAULT_QUEUE_SIZE",
    "DepthRecorder",
    "DepthSessionContext",
    "DepthState",
]
