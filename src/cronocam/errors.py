"""
Exception hierarchy for cronocam.

Per-file upload failures derive from UploadError, ledger failures from
LedgerError. CancellationError is kept apart so callers can tell a
user-initiated stop from a protocol failure.
"""


class CronocamError(Exception):
    """Base class for all cronocam errors."""


class UploadError(CronocamError):
    """A single file could not be uploaded."""


class SessionStartError(UploadError):
    """The remote service refused to open a resumable upload session."""


class ChunkTransferError(UploadError):
    """A chunk could not be delivered; the whole transfer is abandoned."""


class FinalizeError(UploadError):
    """Creating the media item from an upload token failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class FinalizeRetryableError(FinalizeError):
    """Rate limited, server-side, transport or malformed-response failure."""


class FinalizeFatalError(FinalizeError):
    """Client-side rejection (4xx other than 429). Never retried."""


class RetriesExhaustedError(FinalizeError):
    """Every finalize attempt failed with a retryable error."""

    def __init__(self, message: str, attempts: int, last_error: Exception | None = None):
        status_code = getattr(last_error, "status_code", None)
        super().__init__(message, status_code=status_code)
        self.attempts = attempts
        self.last_error = last_error


class LedgerError(CronocamError):
    """Base class for upload ledger failures."""


class DuplicateError(LedgerError):
    """A record with the same content fingerprint already exists."""

    def __init__(self, fingerprint: str, file_path: str | None = None):
        super().__init__(f"fingerprint already recorded: {fingerprint}")
        self.fingerprint = fingerprint
        self.file_path = file_path


class StorageError(LedgerError):
    """The ledger's backing store could not be read or written."""


class CancellationError(CronocamError):
    """The caller cancelled the run."""
