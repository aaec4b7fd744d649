"""
Session Manager - Handles recording session lifecycle.

Creates the session directory, starts the video encoder and depth recorder,
fans every sensor sample out to video, depth and pose, and hands the
session to the finalize pipeline on stop.
"""

import asyncio
import math
from pathlib import Path
from typing import Callable, Optional

from rgbd_logger.core.logging_config import attach_session_log
from rgbd_logger.core.logging_utils import LoggerLike, ensure_structured_logger
from rgbd_logger.core.paths import VIDEO_FILENAME
from rgbd_logger.modules.base.metadata import DeviceDescriptor, SensorSample
from rgbd_logger.modules.base.storage_utils import create_session_id, unique_session_dir
from rgbd_logger.modules.base.typed_config import RecorderConfig
from rgbd_logger.modules.Depth.errors import CompressorInitError
from rgbd_logger.modules.Depth.frame import FrameGeometry
from rgbd_logger.modules.Depth.recorder import DepthRecorder
from rgbd_logger.modules.Pose.accumulator import FrameRecord
from rgbd_logger.modules.Video.encoder import VideoEncoder
from rgbd_logger.network.uploader import ArchiveUploader, UploadError
from rgbd_logger.storage.disk_guard import DiskGuard, estimate_session_budget

from .errors import SessionStateError, StorageUnavailableError
from .finalize import SessionFinalizer, SessionResult
from .session import RecordingSession, SessionState


class SessionManager:
    """
    Manages one recording session at a time.

    Responsibilities:
    - Start video/depth/pose capture into a fresh session directory
    - Fan sensor samples out to the three streams
    - Finalize, archive and (optionally) upload on stop
    """

    def __init__(
        self,
        config: RecorderConfig,
        *,
        device: Optional[DeviceDescriptor] = None,
        uploader: Optional[ArchiveUploader] = None,
        disk_guard: Optional[DiskGuard] = None,
        video_factory: Callable[..., VideoEncoder] = VideoEncoder,
        depth_factory: Callable[..., DepthRecorder] = DepthRecorder,
        finalizer: Optional[SessionFinalizer] = None,
        logger: LoggerLike = None,
    ):
        self.config = config
        self.logger = ensure_structured_logger(logger, fallback_name="SessionManager")
        self.device = device or DeviceDescriptor(name=config.device_name)
        self.uploader = uploader
        self.disk_guard = disk_guard or DiskGuard(reserve_gb=config.disk_threshold_gb, logger=self.logger)
        self._video_factory = video_factory
        self._depth_factory = depth_factory
        self._finalizer = finalizer or SessionFinalizer(logger=self.logger)
        self._session: Optional[RecordingSession] = None

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session else SessionState.IDLE

    @property
    def recording(self) -> bool:
        return self._session is not None and self._session.is_recording

    # ------------------------------------------------------------------
    # Start

    async def start_session(
        self,
        session_id: Optional[str] = None,
        *,
        depth_geometry: Optional[FrameGeometry] = None,
        expected_frames: Optional[int] = None,
    ) -> RecordingSession:
        """Preflight the disk, then open the session directory and start every stream.

        ``expected_frames`` sizes the disk preflight; without it the session is
        budgeted for ``disk_budget_duration_s`` of capture.
        """
        if self._session is not None and self._session.state in (SessionState.RECORDING, SessionState.FINALIZING):
            raise SessionStateError(f"Session {self._session.session_id} is still {self._session.state.value}")

        data_dir = Path(self.config.data_dir)
        if expected_frames is None:
            expected_frames = math.ceil(self.config.disk_budget_duration_s * self.config.video_fps)
        budget = estimate_session_budget(
            expected_frames,
            max_frames_per_chunk=self.config.max_frames_per_chunk,
            depth_geometry=depth_geometry,
            video_resolution=self.config.video_resolution,
        )
        status = await self.disk_guard.check_before_start(data_dir, budget)
        if not status.ok:
            raise StorageUnavailableError(f"Not enough free space in {data_dir}: {status.describe()}")

        session_id = session_id or create_session_id(self.config.session_prefix)
        session_dir = await asyncio.to_thread(unique_session_dir, data_dir, session_id)
        await asyncio.to_thread(session_dir.mkdir, parents=True, exist_ok=False)

        session = RecordingSession(
            session_id=session_dir.name,
            session_dir=session_dir,
            device=self.device,
        )
        if self.config.session_log:
            session.log_handler = attach_session_log(session_dir, self.config.log_level)
        self.logger.info("Starting session %s in %s", session.session_id, session_dir)

        session.video = self._video_factory(
            session_dir / VIDEO_FILENAME,
            self.config.video_resolution,
            self.config.video_fps,
            use_pyav=self.config.use_pyav,
            logger=self.logger,
        )
        try:
            await asyncio.to_thread(session.video.start)
        except Exception as exc:
            self.logger.error("Video encoder failed to start, recording without video: %s", exc)
            session.video_error = str(exc)
            session.video = None

        session.depth = self._depth_factory(
            max_frames_per_chunk=self.config.max_frames_per_chunk,
            queue_size=self.config.depth_queue_size,
            logger=self.logger,
        )
        try:
            await asyncio.wrap_future(session.depth.start(session_dir, depth_geometry))
        except CompressorInitError as exc:
            # Depth is terminal for this session; video and pose keep going.
            self.logger.error("Depth recording unavailable for %s: %s", session.session_id, exc)

        session.mark_recording()
        self._session = session
        return session

    # ------------------------------------------------------------------
    # Capture fan-out

    def handle_sample(self, sample: SensorSample) -> bool:
        """Route one capture tick to video, depth and pose. Safe from any thread.

        Returns False when no session is recording. A stop that races with
        this call waits until the tick has been fanned out.
        """
        session = self._session
        if session is None:
            return False

        with session.admit() as recording:
            if not recording:
                return False
            if sample.color is not None and session.video is not None:
                session.video.write_frame(sample.color, sample.timestamp)
            if sample.depth is not None and session.depth is not None:
                session.depth.submit(sample.depth)
            if sample.pose is not None:
                session.poses.append(
                    FrameRecord.from_sample(
                        sample.pose,
                        sample.timestamp,
                        gripper_poses=sample.gripper_poses,
                        gripper_width=sample.gripper_width,
                    )
                )
        return True

    # ------------------------------------------------------------------
    # Stop

    async def stop_session(self, *, upload: Optional[bool] = None) -> SessionResult:
        session = self._session
        if session is None or not session.is_recording:
            raise SessionStateError("No session is recording")

        self.logger.info("Stopping session %s", session.session_id)
        result = await self._finalizer.finalize(session)

        should_upload = self.config.upload_enabled if upload is None else upload
        if should_upload:
            await self._upload(result)

        self.logger.info("Session summary:\n%s", result.summary())
        return result

    async def _upload(self, result: SessionResult) -> None:
        if self.uploader is None:
            result.upload_error = "no upload server configured"
            self.logger.warning("Upload requested but no server is configured")
            return
        if result.archive is None or not result.archive.ok:
            result.upload_error = "no archive to upload"
            return
        try:
            await self.uploader.upload_archive(result.archive.path)
            result.uploaded = True
        except UploadError as exc:
            result.upload_error = str(exc)
            self.logger.error("Upload failed, archive kept at %s: %s", result.archive.path, exc)


__all__ = ["SessionManager"]
