"""Multipart upload of session archives to a collection server."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiohttp

from rgbd_logger.core.logging_utils import LoggerLike, ensure_structured_logger

_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    "tgz": "application/x-gzip",
    "bson": "application/bson",
    "yaml": "application/x-yaml",
    "yml": "application/x-yaml",
}


def mime_type_for(path: Path) -> str:
    """MIME type from the last extension; unknown types are octet-stream."""
    suffix = Path(path).suffix.lower().lstrip(".")
    return _MIME_TYPES.get(suffix, "application/octet-stream")


class UploadError(RuntimeError):
    """Transport failure or a non-2xx answer from the server."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(slots=True)
class UploadResult:
    status: int
    body: str


class ArchiveUploader:
    """Posts files to ``<server_url>/upload`` as ``multipart/form-data``.

    With ``verify_tls`` off every certificate the server presents is
    accepted, which is what self-signed collection servers need. There is
    no retry; a failed upload leaves the archive where it is.
    """

    def __init__(
        self,
        server_url: str,
        *,
        verify_tls: bool = False,
        timeout: float = 300.0,
        logger: LoggerLike = None,
    ) -> None:
        if not server_url:
            raise ValueError("server_url is required")
        self.server_url = server_url.rstrip("/")
        self.verify_tls = verify_tls
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

    @property
    def upload_url(self) -> str:
        return f"{self.server_url}/upload"

    def _session(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(ssl=None if self.verify_tls else False)
        return aiohttp.ClientSession(connector=connector, timeout=self._timeout)

    async def test_connection(self) -> bool:
        """GET the server root; only a 200 counts as reachable."""
        try:
            async with self._session() as session:
                async with session.get(self.server_url) as resp:
                    body = await resp.text()
                    self._logger.info("Connection test %s -> %d %s", self.server_url, resp.status, body[:200])
                    return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self._logger.warning("Connection test to %s failed: %s", self.server_url, exc)
            return False

    async def upload_file(self, path: Path) -> UploadResult:
        path = Path(path)
        if not path.is_file():
            raise UploadError(f"File does not exist: {path}")

        self._logger.info("Uploading %s to %s", path.name, self.upload_url)
        try:
            async with self._session() as session:
                with open(path, "rb") as handle:
                    form = aiohttp.FormData()
                    form.add_field("file", handle, filename=path.name, content_type=mime_type_for(path))
                    async with session.post(self.upload_url, data=form) as resp:
                        body = await resp.text()
                        status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise UploadError(f"Upload of {path.name} failed: {exc}") from exc

        if not 200 <= status < 300:
            raise UploadError(f"Server answered {status} for {path.name}: {body[:200]}", status=status)
        self._logger.info("Uploaded %s (%d)", path.name, status)
        return UploadResult(status=status, body=body)

    async def upload_archive(self, path: Path, *, check_connection: bool = True) -> UploadResult:
        """Optionally test the server first, then upload."""
        if check_connection and not await self.test_connection():
            raise UploadError(f"Server {self.server_url} is not reachable")
        return await self.upload_file(path)


__all__ = ["ArchiveUploader", "UploadError", "UploadResult", "mime_type_for"]
