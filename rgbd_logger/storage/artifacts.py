"""Descriptors for files a session produces."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rgbd_logger.modules.base.storage_utils import file_size, format_bytes


class ArtifactStatus:
    OK = "ok"
    ERROR = "error"


@dataclass(slots=True)
class ArtifactInfo:
    path: Path
    byte_size: Optional[int]
    status: str = ArtifactStatus.OK
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ArtifactStatus.OK

    @property
    def human_size(self) -> str:
        return format_bytes(self.byte_size) if self.ok else "unknown"

    @classmethod
    def from_path(cls, path: Path) -> "ArtifactInfo":
        return cls(path=Path(path), byte_size=file_size(path))

    @classmethod
    def failed(cls, path: Path, error: BaseException | str) -> "ArtifactInfo":
        return cls(path=Path(path), byte_size=None, status=ArtifactStatus.ERROR, error=str(error))


__all__ = ["ArtifactInfo", "ArtifactStatus"]
