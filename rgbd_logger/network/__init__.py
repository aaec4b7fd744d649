"""Upload client for finished session archives."""

from .uploader import ArchiveUploader, UploadError, UploadResult, mime_type_for

__all__ = ["ArchiveUploader", "UploadError", "UploadResult", "mime_type_for"]
