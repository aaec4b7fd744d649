"""Session artifact writers: binary frame data, manifest, archive."""

from .archive import build_archive, list_archive
from .artifacts import ArtifactInfo, ArtifactStatus
from .disk_guard import DiskGuard, DiskHealth, DiskStatus
from .frame_data import read_frame_data, write_frame_data_async
from .manifest import read_manifest, render_manifest, write_manifest_async

__all__ = [
    "ArtifactInfo",
    "ArtifactStatus",
    "DiskGuard",
    "DiskHealth",
    "DiskStatus",
    "build_archive",
    "list_archive",
    "read_frame_data",
    "read_manifest",
    "render_manifest",
    "write_frame_data_async",
    "write_manifest_async",
]
