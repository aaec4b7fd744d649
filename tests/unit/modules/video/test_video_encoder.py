"""Unit tests for the color video encoder."""

import asyncio

import numpy as np
import pytest

from rgbd_logger.modules.Video import encoder as encoder_module
from rgbd_logger.modules.Video.encoder import VideoEncoder


def color_frame(index: int, width: int = 64, height: int = 48) -> np.ndarray:
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[:, :, index % 3] = 200
    return frame


class TestVideoEncoderState:
    """Behavior that does not need a codec."""

    def test_write_before_start_is_rejected(self, tmp_path):
        encoder = VideoEncoder(tmp_path / "recording.mp4", (64, 48), 30.0)
        assert encoder.write_frame(color_frame(0), 0.0) is False
        assert encoder.is_running is False

    def test_conform_converts_grey_and_floats(self, tmp_path):
        encoder = VideoEncoder(tmp_path / "recording.mp4", (4, 2), 30.0)
        grey = np.full((2, 4), 300.0)
        conformed = encoder._conform(grey)
        assert conformed.shape == (2, 4, 3)
        assert conformed.dtype == np.uint8
        assert conformed.max() == 255

    def test_conform_rejects_bad_channel_count(self, tmp_path):
        encoder = VideoEncoder(tmp_path / "recording.mp4", (4, 2), 30.0)
        assert encoder._conform(np.zeros((2, 4, 4), dtype=np.uint8)) is None

    def test_opencv_missing_raises_on_start(self, tmp_path, monkeypatch):
        monkeypatch.setattr(encoder_module, "_HAS_CV2", False)
        encoder = VideoEncoder(tmp_path / "recording.mp4", (64, 48), 30.0, use_pyav=False)
        with pytest.raises(RuntimeError):
            encoder.start()


class TestOpenCVEncoder:

    def test_encodes_frames(self, tmp_path):
        pytest.importorskip("cv2")
        path = tmp_path / "recording.mp4"
        encoder = VideoEncoder(path, (64, 48), 30.0, use_pyav=False)
        encoder.start()
        for i in range(10):
            encoder.write_frame(color_frame(i), i / 30.0)
        info = encoder.stop()

        assert info.backend == "opencv"
        assert info.frame_count == 10
        assert info.byte_size and info.byte_size > 0
        assert info.duration_s == pytest.approx(9 / 30.0)
        assert encoder.stop() is info

    def test_resizes_mismatched_frames(self, tmp_path):
        pytest.importorskip("cv2")
        encoder = VideoEncoder(tmp_path / "recording.mp4", (64, 48), 30.0, use_pyav=False)
        encoder.start()
        encoder.write_frame(color_frame(0, 128, 96), 0.0)
        info = encoder.stop()
        assert info.frame_count == 1


class TestPyAVEncoder:

    @pytest.mark.asyncio
    async def test_encodes_frames_async(self, tmp_path):
        pytest.importorskip("av")
        path = tmp_path / "recording.mp4"
        encoder = VideoEncoder(path, (64, 48), 30.0, use_pyav=True)
        await asyncio.to_thread(encoder.start)
        for i in range(15):
            encoder.write_frame(color_frame(i), i / 30.0)
        info = await encoder.stop_async()

        assert info.backend == "pyav"
        assert info.frame_count == 15
        assert info.frames_dropped == 0
        assert path.stat().st_size == info.byte_size
