"""
Shared data model and helpers used by every recorder module.
"""

from .metadata import DeviceDescriptor, SensorSample
from .storage_utils import (
    create_session_id,
    file_size,
    format_bytes,
    sanitize_component,
    unique_session_dir,
)
from .typed_config import RecorderConfig

__all__ = [
    "DeviceDescriptor",
    "RecorderConfig",
    "SensorSample",
    "create_session_id",
    "file_size",
    "format_bytes",
    "sanitize_component",
    "unique_session_dir",
]
