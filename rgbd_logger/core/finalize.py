"""
Session finalize pipeline.

Stopping a session drains the video encoder and the depth recorder (both
started at once, awaited in order), then writes the frame data document,
the manifest and the archive. A failing step is recorded as a
``FinalizeError`` and the remaining steps still run: losing the metadata
document must never cost the captured video or depth data.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Optional

from rgbd_logger.core.logging_config import detach_session_log
from rgbd_logger.core.logging_utils import LoggerLike, ensure_structured_logger
from rgbd_logger.core.paths import FRAME_DATA_FILENAME, MANIFEST_FILENAME, VIDEO_FILENAME
from rgbd_logger.modules.base.storage_utils import format_bytes
from rgbd_logger.modules.Depth.chunk_file import ChunkDescriptor
from rgbd_logger.modules.Video.encoder import VideoInfo
from rgbd_logger.storage.archive import build_archive
from rgbd_logger.storage.artifacts import ArtifactInfo
from rgbd_logger.storage.frame_data import write_frame_data_async
from rgbd_logger.storage.manifest import render_manifest, write_manifest_async

from .errors import FinalizeError
from .session import RecordingSession


@dataclass
class SessionResult:
    """Everything a finished session produced, including what failed."""

    session_id: str
    session_dir: Path
    frame_count: int = 0
    video: Optional[VideoInfo] = None
    chunks: list[ChunkDescriptor] = field(default_factory=list)
    depth_frames_dropped: int = 0
    frame_data: Optional[ArtifactInfo] = None
    manifest: Optional[ArtifactInfo] = None
    archive: Optional[ArtifactInfo] = None
    errors: list[FinalizeError] = field(default_factory=list)
    upload_error: Optional[str] = None
    uploaded: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def depth_frames(self) -> int:
        return sum(chunk.frame_count for chunk in self.chunks)

    def error_for(self, step: str) -> Optional[FinalizeError]:
        for err in self.errors:
            if err.step == step:
                return err
        return None

    def summary(self) -> str:
        """Completion text; failed artifacts read ``unknown``, never zero."""
        video_size = "unknown"
        if self.video is not None and self.error_for("video") is None and self.video.byte_size is not None:
            video_size = format_bytes(self.video.byte_size)

        lines = [
            f"Recording complete: {self.session_id}",
            f"Frames: {self.frame_count}",
            f"Video: {video_size}"
            + (f" ({self.video.frame_count} frames)" if self.video is not None else ""),
        ]

        depth_err = self.error_for("depth")
        depth_bytes = sum(chunk.byte_size for chunk in self.chunks)
        depth_line = (
            f"Depth: {len(self.chunks)} chunk(s), {self.depth_frames} frames, "
            f"{format_bytes(depth_bytes)}"
        )
        if self.depth_frames_dropped:
            depth_line += f" ({self.depth_frames_dropped} dropped)"
        if depth_err is not None:
            depth_line += f" - FAILED: {depth_err.cause}"
        lines.append(depth_line)

        for label, step, artifact in (
            ("Frame data", "frame_data", self.frame_data),
            ("Manifest", "manifest", self.manifest),
            ("Archive", "archive", self.archive),
        ):
            err = self.error_for(step)
            if err is not None or artifact is None or not artifact.ok:
                reason = err.cause if err is not None else (artifact.error if artifact else "not produced")
                lines.append(f"{label}: unknown - FAILED: {reason}")
            else:
                lines.append(f"{label}: {artifact.human_size} saved")

        if self.upload_error:
            lines.append(f"Upload: FAILED: {self.upload_error}")
        elif self.uploaded:
            lines.append("Upload: done")
        return "\n".join(lines)


class SessionFinalizer:
    """Runs the ordered teardown chain for one session."""

    def __init__(self, *, archive_dir: Optional[Path] = None, logger: LoggerLike = None) -> None:
        self._archive_dir = archive_dir
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

    async def _step(self, result: SessionResult, step: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except Exception as exc:
            self._logger.exception("Finalize step '%s' failed for %s", step, result.session_id)
            result.errors.append(FinalizeError(step, exc))
            return None

    async def finalize(self, session: RecordingSession) -> SessionResult:
        session.mark_finalizing()
        result = SessionResult(session_id=session.session_id, session_dir=session.session_dir)
        result.frame_count = session.frame_count
        self._logger.info("Finalizing session %s (%d frames)", session.session_id, session.frame_count)

        # Both drains start now; the chain below awaits them in order.
        video_task: Optional[asyncio.Future] = None
        if session.video is not None:
            video_task = asyncio.ensure_future(session.video.stop_async())
        depth_future: Optional[asyncio.Future] = None
        if session.depth is not None:
            try:
                depth_future = asyncio.wrap_future(session.depth.finish())
            except Exception as exc:
                result.errors.append(FinalizeError("depth", exc))

        # Video
        if video_task is not None:
            result.video = await self._step(result, "video", video_task)
            if result.video is not None and result.video.error and result.video.frame_count == 0:
                result.errors.append(FinalizeError("video", RuntimeError(result.video.error)))
        elif session.video_error:
            result.errors.append(FinalizeError("video", RuntimeError(session.video_error)))

        # Depth
        if depth_future is not None:
            chunks = await self._step(result, "depth", depth_future)
            result.chunks = list(chunks or [])
        if session.depth is not None:
            result.depth_frames_dropped = session.depth.frames_dropped
            if session.depth.init_error is not None and result.error_for("depth") is None:
                result.errors.append(FinalizeError("depth", session.depth.init_error))

        # Frame data document
        frame_data_path = session.session_dir / FRAME_DATA_FILENAME
        result.frame_data = await self._step(
            result, "frame_data", write_frame_data_async(frame_data_path, session.poses)
        )
        if result.frame_data is None:
            result.frame_data = ArtifactInfo.failed(frame_data_path, result.error_for("frame_data").cause)
            frame_data_path.unlink(missing_ok=True)

        # Manifest
        manifest_path = session.session_dir / MANIFEST_FILENAME
        result.manifest = await self._step(
            result, "manifest", self._write_manifest(session, result, manifest_path)
        )
        if result.manifest is None:
            result.manifest = ArtifactInfo.failed(manifest_path, result.error_for("manifest").cause)

        # Archive (session log closed first)
        if session.log_handler is not None:
            self._logger.info("Archiving session %s", session.session_id)
            detach_session_log(session.log_handler)
            session.log_handler = None
        result.archive = await self._step(
            result, "archive", asyncio.to_thread(build_archive, session.session_dir, self._archive_dir)
        )

        session.mark_complete()
        if result.errors:
            self._logger.warning("Session %s completed with %d error(s): %s", session.session_id,
                                 len(result.errors), ", ".join(e.step for e in result.errors))
        else:
            self._logger.info("Session %s complete", session.session_id)
        return result

    async def _write_manifest(self, session: RecordingSession, result: SessionResult, path: Path) -> ArtifactInfo:
        video_err = result.error_for("video")
        depth_err = result.error_for("depth")
        video_path = result.video.path if result.video is not None else session.session_dir / VIDEO_FILENAME
        video_stats = None
        if result.video is not None:
            video_stats = {
                "frames": result.video.frame_count,
                "frames_dropped": result.video.frames_dropped,
                "duration_seconds": round(result.video.duration_s, 3),
                "backend": result.video.backend,
            }
        depth_stats: dict[str, Any] = {}
        if session.depth is not None:
            depth_stats["frames_dropped"] = session.depth.frames_dropped
            depth_stats["max_frames_per_chunk"] = session.depth.max_frames_per_chunk
            if session.depth.geometry is not None:
                depth_stats["geometry"] = session.depth.geometry.to_dict()
            drops = session.depth.drop_counts
            if drops:
                depth_stats["drop_reasons"] = drops

        manifest = render_manifest(
            session_id=session.session_id,
            started_at=session.started_at or session.ended_at,
            ended_at=session.ended_at,
            frame_count=session.frame_count,
            device=session.device.to_dict(),
            video_path=video_path if (result.video is not None or session.video is not None) else None,
            video_stats=video_stats,
            video_error=str(video_err.cause) if video_err is not None else None,
            frame_data=result.frame_data,
            chunks=result.chunks,
            depth_stats=depth_stats,
            depth_error=str(depth_err.cause) if depth_err is not None else None,
            errors=[str(err) for err in result.errors],
        )
        return await write_manifest_async(path, manifest)


__all__ = ["SessionFinalizer", "SessionResult"]
