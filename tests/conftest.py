"""Shared pytest configuration and fixtures for the RGB-D Logger test suite."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring a physical capture device"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that require a physical capture device",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --run-hardware is specified."""
    if config.getoption("--run-hardware"):
        return

    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def small_geometry():
    """A 4x3 float32 depth geometry with no row padding."""
    from rgbd_logger.modules.Depth.frame import FrameGeometry
    return FrameGeometry.packed(4, 3)


@pytest.fixture
def padded_geometry():
    """A 5x4 float32 depth geometry with 12 bytes of padding per row."""
    from rgbd_logger.modules.Depth.frame import FrameGeometry
    return FrameGeometry(width=5, height=4, row_stride=5 * 4 + 12, bytes_per_sample=4)


@pytest.fixture
def make_depth_frame():
    """Factory building a DepthFrame whose samples encode ``seed``."""
    from rgbd_logger.modules.Depth.frame import DepthFrame

    def _make(geometry, seed: int = 0, timestamp: float = 0.0):
        buffer = np.zeros((geometry.height, geometry.row_stride), dtype=np.uint8)
        samples = (np.arange(geometry.width * geometry.height, dtype=np.float32)
                   .reshape(geometry.height, geometry.width) + seed)
        buffer[:, : geometry.row_bytes] = samples.view(np.uint8).reshape(geometry.height, geometry.row_bytes)
        return DepthFrame(buffer, geometry, timestamp)

    return _make


# =============================================================================
# Mock Fixtures
# =============================================================================

@pytest.fixture
def flaky_compressor_factory():
    """Compressor factory whose Nth feed (1-based, across chunks) fails."""
    from tests.infrastructure.mocks.depth_mocks import FlakyCompressorFactory
    return FlakyCompressorFactory


@pytest.fixture
def fake_video_factory():
    """Factory producing in-memory video encoders."""
    from tests.infrastructure.mocks.video_mocks import FakeVideoFactory
    return FakeVideoFactory()
