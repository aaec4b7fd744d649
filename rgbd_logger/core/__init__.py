"""Recording session orchestration."""

from .errors import FinalizeError, SessionStateError, StorageUnavailableError

__all__ = [
    'FinalizeError',
    'SessionStateError',
    'StorageUnavailableError',
]
