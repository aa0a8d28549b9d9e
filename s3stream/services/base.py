from __future__ import annotations


class UploadError(Exception):
    """Base class for errors surfaced by an upload session."""


class CreateUploadError(UploadError):
    """Raised when the backend refuses to start a multipart upload."""


class PartUploadError(UploadError):
    """Raised when a single part fails to upload."""

    def __init__(self, message: str, *, part_number: int) -> None:
        super().__init__(message)
        self.part_number = part_number


class CompleteUploadError(UploadError):
    """Raised when the backend rejects finalization of the upload."""


class AbortUploadError(UploadError):
    """Raised when aborting the upload fails; keeps the error that caused the abort."""

    def __init__(self, message: str, *, cause: UploadError) -> None:
        super().__init__(message)
        self.cause = cause


class UploadCancelledError(UploadError):
    """Raised when the producer aborts the upload itself."""


class MissingStorageClientError(UploadError):
    """Raised when an uploader is built without a storage backend."""


class StorageBackendNotConfiguredError(UploadError):
    """Raised when the storage backend is not properly configured."""
