"""Integration test fixtures: whole sessions on a temporary volume.

These tests drive the real video encoder, depth recorder and finalize
pipeline together, so they need OpenCV or PyAV installed.
"""

from __future__ import annotations

import tarfile
from pathlib import Path

import pytest

from rgbd_logger.modules.base.typed_config import RecorderConfig


@pytest.fixture
def recorder_config(tmp_path: Path) -> RecorderConfig:
    return RecorderConfig(
        data_dir=tmp_path / "recordings",
        session_prefix="e2e",
        max_frames_per_chunk=5,
        video_width=64,
        video_height=48,
        disk_threshold_gb=0.0,
    )


@pytest.fixture
def extract_archive(tmp_path: Path):
    """Unpack a session archive and return the extracted session directory."""

    def _extract(archive: Path) -> Path:
        target = tmp_path / "extracted"
        with tarfile.open(archive, "r:gz") as tar:
            if hasattr(tarfile, "data_filter"):
                tar.extractall(target, filter="data")
            else:
                tar.extractall(target)
        (session_dir,) = list(target.iterdir())
        return session_dir

    return _extract
