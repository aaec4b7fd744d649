"""Unit tests for the session manifest."""

from datetime import datetime, timedelta, timezone

import pytest

from rgbd_logger.modules.Depth.chunk_file import ChunkDescriptor
from rgbd_logger.storage.artifacts import ArtifactInfo
from rgbd_logger.storage.manifest import (
    MANIFEST_VERSION,
    read_manifest,
    render_manifest,
    write_manifest_async,
)


START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_files(tmp_path):
    video = tmp_path / "recording.mp4"
    video.write_bytes(b"v" * 2500)
    frame_data = tmp_path / "frame_data.bson"
    frame_data.write_bytes(b"f" * 40)
    chunks = []
    for index, frames in enumerate((3, 1)):
        path = tmp_path / f"depth_map_{index}.depth"
        path.write_bytes(b"d" * (100 * frames))
        chunks.append(ChunkDescriptor(path, index, frames, 100 * frames))
    return video, frame_data, chunks


def render(session_files, **overrides):
    video, frame_data, chunks = session_files
    kwargs = dict(
        session_id="session_20240501_120000",
        started_at=START,
        ended_at=START + timedelta(seconds=12.5),
        frame_count=4,
        device={"name": "rig-1", "model": "test"},
        video_path=video,
        video_stats={"frames": 4},
        frame_data=ArtifactInfo.from_path(frame_data),
        chunks=chunks,
        depth_stats={"frames_dropped": 0},
    )
    kwargs.update(overrides)
    return render_manifest(**kwargs)


class TestRenderManifest:

    def test_session_block(self, session_files):
        manifest = render(session_files)
        assert manifest["manifest_version"] == MANIFEST_VERSION
        assert manifest["session"]["id"] == "session_20240501_120000"
        assert manifest["session"]["duration_seconds"] == 12.5
        assert manifest["session"]["frame_count"] == 4
        assert manifest["device"]["name"] == "rig-1"
        assert "errors" not in manifest

    def test_sizes_come_from_disk(self, session_files):
        manifest = render(session_files)
        assert manifest["video"]["status"] == "ok"
        assert manifest["video"]["size_bytes"] == 2500
        assert manifest["video"]["size"] == "2.5 KB"
        assert manifest["video"]["frames"] == 4
        assert manifest["frame_data"]["size_bytes"] == 40
        assert manifest["frame_data"]["records"] == 4

    def test_depth_totals(self, session_files):
        depth = render(session_files)["depth"]
        assert depth["status"] == "ok"
        assert depth["chunk_count"] == 2
        assert depth["total_frames"] == 4
        assert depth["total_size_bytes"] == 400
        assert [row["name"] for row in depth["chunks"]] == ["depth_map_0.depth", "depth_map_1.depth"]
        assert depth["frames_dropped"] == 0

    def test_failed_frame_data_is_unknown_not_zero(self, session_files):
        _, frame_data, _ = session_files
        manifest = render(
            session_files,
            frame_data=ArtifactInfo.failed(frame_data, "disk full"),
            errors=["frame_data failed: disk full"],
        )
        section = manifest["frame_data"]
        assert section["status"] == "error"
        assert section["error"] == "disk full"
        assert section["size_bytes"] == "unknown"
        assert section["size"] == "unknown"
        assert manifest["video"]["status"] == "ok"
        assert manifest["errors"] == ["frame_data failed: disk full"]

    def test_video_error(self, session_files):
        manifest = render(session_files, video_error="encoder crashed")
        assert manifest["video"]["status"] == "error"
        assert manifest["video"]["size_bytes"] == "unknown"

    def test_missing_video_file_is_reported(self, session_files):
        video, _, _ = session_files
        video.unlink()
        manifest = render(session_files)
        assert manifest["video"]["status"] == "error"
        assert manifest["video"]["size_bytes"] == "unknown"

    def test_depth_error(self, session_files):
        manifest = render(session_files, chunks=[], depth_error="cannot allocate")
        assert manifest["depth"]["status"] == "error"
        assert manifest["depth"]["error"] == "cannot allocate"
        assert manifest["depth"]["chunk_count"] == 0


class TestWriteManifest:

    @pytest.mark.asyncio
    async def test_write_and_read_back(self, tmp_path, session_files):
        path = tmp_path / "recording_info.yaml"
        info = await write_manifest_async(path, render(session_files))

        assert info.ok
        loaded = read_manifest(path)
        assert loaded["session"]["id"] == "session_20240501_120000"
        assert loaded["depth"]["chunks"][0]["frames"] == 3
        assert not list(tmp_path.glob(".recording_info.yaml.*"))

    @pytest.mark.asyncio
    async def test_keys_keep_insertion_order(self, tmp_path, session_files):
        path = tmp_path / "recording_info.yaml"
        await write_manifest_async(path, render(session_files))
        first_line = path.read_text(encoding="utf-8").splitlines()[0]
        assert first_line.startswith("manifest_version")

    @pytest.mark.asyncio
    async def test_frame_data_section_round_trips(self, tmp_path, session_files):
        path = tmp_path / "recording_info.yaml"
        info = await write_manifest_async(path, render(session_files))
        assert info.ok
        assert read_manifest(path)["frame_data"]["records"] == 4

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_manifest(self, tmp_path):
        path = tmp_path / "recording_info.yaml"
        await write_manifest_async(path, {"manifest_version": 1})
        with pytest.raises(Exception):
            await write_manifest_async(path, {"bad": object()})
        assert read_manifest(path) == {"manifest_version": 1}
        assert [p.name for p in tmp_path.iterdir()] == ["recording_info.yaml"]
