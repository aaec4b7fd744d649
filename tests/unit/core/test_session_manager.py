"""Unit tests for SessionManager."""

import logging
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from rgbd_logger.core.errors import SessionStateError, StorageUnavailableError
from rgbd_logger.core.logging_config import detach_session_log
from rgbd_logger.core.session import SessionState
from rgbd_logger.core.session_manager import SessionManager
from rgbd_logger.modules.base.metadata import SensorSample
from rgbd_logger.modules.base.typed_config import RecorderConfig
from rgbd_logger.modules.Depth.recorder import DepthRecorder
from rgbd_logger.modules.SensorStub.source import SyntheticSensor
from rgbd_logger.network.uploader import UploadError, UploadResult
from rgbd_logger.storage.archive import list_archive
from rgbd_logger.storage.disk_guard import DiskHealth, DiskStatus
from tests.infrastructure.mocks.depth_mocks import FlakyCompressorFactory
from tests.infrastructure.mocks.video_mocks import FakeVideoFactory


@pytest.fixture
def config(tmp_path):
    return RecorderConfig(
        data_dir=tmp_path / "recordings",
        session_prefix="test",
        max_frames_per_chunk=4,
        disk_threshold_gb=0.0,
        video_width=32,
        video_height=24,
    )


@pytest.fixture
def sensor():
    return SyntheticSensor(color_resolution=(32, 24), depth_resolution=(8, 6), realtime=False)


@pytest.fixture
def video_factory():
    return FakeVideoFactory()


@pytest.fixture
def uploader():
    mock = MagicMock()
    mock.upload_archive = AsyncMock(return_value=UploadResult(status=200, body="ok"))
    return mock


@pytest.fixture
def manager(config, sensor, video_factory, uploader):
    return SessionManager(
        config,
        device=sensor.describe("test-rig"),
        uploader=uploader,
        video_factory=video_factory,
    )


async def record(manager, sensor, frames: int):
    await manager.start_session(depth_geometry=sensor.depth_geometry)
    async for sample in sensor.stream(max_frames=frames):
        manager.handle_sample(sample)


class TestSessionManagerInit:

    def test_init(self, manager):
        assert manager.session is None
        assert manager.state is SessionState.IDLE
        assert manager.recording is False

    def test_handle_sample_without_session(self, manager, sensor):
        assert manager.handle_sample(sensor.next_sample(0.0)) is False


class TestSessionManagerStartSession:

    @pytest.mark.asyncio
    async def test_start_creates_session_dir(self, manager, config, sensor, video_factory):
        session = await manager.start_session(depth_geometry=sensor.depth_geometry)
        try:
            assert manager.recording
            assert session.session_dir.is_dir()
            assert session.session_dir.parent == config.data_dir
            assert session.session_id.startswith("test_")
            assert video_factory.last.started
            assert video_factory.last.path == session.session_dir / "recording.mp4"
            assert session.depth.max_frames_per_chunk == 4
        finally:
            await manager.stop_session(upload=False)

    @pytest.mark.asyncio
    async def test_explicit_session_id(self, manager):
        session = await manager.start_session("bench_run")
        assert session.session_id == "bench_run"
        await manager.stop_session(upload=False)

    @pytest.mark.asyncio
    async def test_session_id_collision_gets_suffix(self, manager):
        await manager.start_session("same")
        await manager.stop_session(upload=False)
        session = await manager.start_session("same")
        assert session.session_id == "same_2"
        await manager.stop_session(upload=False)

    @pytest.mark.asyncio
    async def test_start_while_recording_raises(self, manager):
        await manager.start_session()
        with pytest.raises(SessionStateError):
            await manager.start_session()
        await manager.stop_session(upload=False)

    @pytest.mark.asyncio
    async def test_low_disk_blocks_start(self, config, video_factory):
        guard = MagicMock()
        guard.check_before_start = AsyncMock(return_value=DiskStatus(
            state=DiskHealth.BLOCKED,
            free_bytes=10,
            required_bytes=0,
            reserve_bytes=1000,
            reason="below_reserve",
        ))
        manager = SessionManager(config, disk_guard=guard, video_factory=video_factory)

        with pytest.raises(StorageUnavailableError):
            await manager.start_session()

        assert manager.session is None
        assert not config.data_dir.exists() or not any(config.data_dir.iterdir())
        assert video_factory.encoders == []

    @pytest.mark.asyncio
    async def test_preflight_is_sized_to_the_session(self, config, sensor, video_factory):
        guard = MagicMock()
        guard.check_before_start = AsyncMock(return_value=DiskStatus(
            state=DiskHealth.OK, free_bytes=10**12, required_bytes=0, reserve_bytes=0,
        ))
        manager = SessionManager(config, disk_guard=guard, video_factory=video_factory)

        await manager.start_session(depth_geometry=sensor.depth_geometry, expected_frames=10)
        await manager.stop_session(upload=False)
        await manager.start_session()
        await manager.stop_session(upload=False)

        (_, sized), (_, default) = [c.args for c in guard.check_before_start.await_args_list]
        assert sized.frames == 10
        assert sized.depth_bytes > 10 * sensor.depth_geometry.frame_bytes
        assert default.frames == 60 * 30
        assert default.depth_bytes == 0

    @pytest.mark.asyncio
    async def test_video_start_failure_records_without_video(self, config, sensor):
        manager = SessionManager(config, video_factory=FakeVideoFactory(fail_start=True))
        await record(manager, sensor, 5)
        assert manager.session.video is None

        result = await manager.stop_session(upload=False)

        assert result.error_for("video") is not None
        assert result.depth_frames == 5
        assert result.frame_data.ok
        assert result.archive.ok

    @pytest.mark.asyncio
    async def test_depth_init_failure_keeps_video(self, config, sensor, video_factory):
        def depth_factory(**kwargs):
            return DepthRecorder(compressor_factory=FlakyCompressorFactory(fail_open_on={1}), **kwargs)

        manager = SessionManager(config, video_factory=video_factory, depth_factory=depth_factory)
        await record(manager, sensor, 5)
        result = await manager.stop_session(upload=False)

        assert result.error_for("depth") is not None
        assert result.chunks == []
        assert result.video.frame_count == 5
        assert result.archive.ok


class TestSessionManagerCapture:

    @pytest.mark.asyncio
    async def test_samples_fan_out(self, manager, sensor, video_factory):
        await record(manager, sensor, 9)
        session = manager.session

        assert session.frame_count == 9
        assert len(video_factory.last.frames) == 9
        assert len(session.poses) == 9
        await manager.stop_session(upload=False)
        assert session.depth.frames_accepted == 9

    @pytest.mark.asyncio
    async def test_partial_sample(self, manager, video_factory):
        await manager.start_session()
        assert manager.handle_sample(SensorSample(timestamp=1.0, pose=(0, 0, 0, 0, 0, 0, 1)))
        session = manager.session
        assert len(session.poses) == 1
        assert video_factory.last.frames == []
        await manager.stop_session(upload=False)

    @pytest.mark.asyncio
    async def test_samples_after_stop_are_ignored(self, manager, sensor):
        await record(manager, sensor, 2)
        await manager.stop_session(upload=False)
        assert manager.handle_sample(sensor.next_sample(5.0)) is False
        assert manager.session.frame_count == 2

    @pytest.mark.asyncio
    async def test_stop_waits_for_tick_in_progress(self, manager, sensor):
        session = await manager.start_session(depth_geometry=sensor.depth_geometry)
        entered = threading.Event()
        release = threading.Event()
        write_frame = session.video.write_frame

        def slow_write(frame, timestamp):
            entered.set()
            release.wait(5.0)
            return write_frame(frame, timestamp)

        session.video.write_frame = slow_write
        results = []
        capture = threading.Thread(target=lambda: results.append(manager.handle_sample(sensor.next_sample(0.0))))
        capture.start()
        assert entered.wait(5.0)

        stopper = threading.Thread(target=session.mark_finalizing)
        stopper.start()
        stopper.join(0.1)
        assert stopper.is_alive()

        release.set()
        capture.join(5.0)
        stopper.join(5.0)
        try:
            assert results == [True]
            assert session.state is SessionState.FINALIZING
            assert session.poses.closed
            assert len(session.poses) == 1
            assert session.frame_count == 1
            assert manager.handle_sample(sensor.next_sample(1.0)) is False
            assert len(session.poses) == 1
        finally:
            session.depth.shutdown()
            session.video.stop()
            detach_session_log(session.log_handler)


class TestSessionManagerStopSession:

    @pytest.mark.asyncio
    async def test_stop_without_session_raises(self, manager):
        with pytest.raises(SessionStateError):
            await manager.stop_session()

    @pytest.mark.asyncio
    async def test_stop_produces_result(self, manager, sensor):
        await record(manager, sensor, 9)
        result = await manager.stop_session(upload=False)

        assert result.ok
        assert manager.state is SessionState.COMPLETE
        assert [c.frame_count for c in result.chunks] == [4, 4, 1]
        assert result.archive.path.exists()

    @pytest.mark.asyncio
    async def test_upload_on_request(self, manager, sensor, uploader):
        await record(manager, sensor, 3)
        result = await manager.stop_session(upload=True)

        uploader.upload_archive.assert_awaited_once_with(result.archive.path)
        assert result.uploaded
        assert result.upload_error is None

    @pytest.mark.asyncio
    async def test_upload_follows_config_by_default(self, manager, sensor, uploader):
        await record(manager, sensor, 3)
        await manager.stop_session()
        uploader.upload_archive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_archive(self, manager, sensor, uploader):
        uploader.upload_archive.side_effect = UploadError("Server answered 500", status=500)
        await record(manager, sensor, 3)
        result = await manager.stop_session(upload=True)

        assert not result.uploaded
        assert "500" in result.upload_error
        assert result.archive.path.exists()
        assert "Upload: FAILED" in result.summary()

    @pytest.mark.asyncio
    async def test_upload_without_server(self, config, sensor, video_factory):
        manager = SessionManager(config, video_factory=video_factory)
        await record(manager, sensor, 1)
        result = await manager.stop_session(upload=True)
        assert result.upload_error == "no upload server configured"


class TestSessionLog:

    @pytest.mark.asyncio
    async def test_session_log_is_archived(self, manager, sensor, caplog):
        caplog.set_level(logging.INFO, logger="rgbd_logger")
        await record(manager, sensor, 3)
        session = manager.session
        assert session.log_handler is not None

        result = await manager.stop_session(upload=False)

        assert session.log_handler is None
        text = (session.session_dir / "session.log").read_text(encoding="utf-8")
        assert f"Starting session {session.session_id}" in text
        assert f"Archiving session {session.session_id}" in text
        assert f"{session.session_id}/session.log" in list_archive(result.archive.path)

    @pytest.mark.asyncio
    async def test_session_log_can_be_disabled(self, config, sensor, video_factory):
        config.session_log = False
        manager = SessionManager(config, video_factory=video_factory)
        await record(manager, sensor, 2)
        result = await manager.stop_session(upload=False)

        assert not (result.session_dir / "session.log").exists()
