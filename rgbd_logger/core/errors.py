"""Session-level exceptions."""

from __future__ import annotations


class SessionStateError(RuntimeError):
    """Raised when a session operation is requested in the wrong state."""


class StorageUnavailableError(RuntimeError):
    """The recording volume failed the free-space preflight."""


class FinalizeError(Exception):
    """One finalize step failed; carried in the session result, never raised past it."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause

    def __repr__(self) -> str:
        return f"FinalizeError(step={self.step!r}, cause={self.cause!r})"


__all__ = ["FinalizeError", "SessionStateError", "StorageUnavailableError"]
