from .base import (
    AbortUploadError,
    CompleteUploadError,
    CreateUploadError,
    MissingStorageClientError,
    PartUploadError,
    StorageBackendNotConfiguredError,
    UploadCancelledError,
    UploadError,
)
from .concurrency import ConcurrencyGate, GateClosedError, clamp_concurrency
from .events import EventEmitter, UploadEvent
from .part_buffer import MIN_PART_SIZE, PartBuffer, PendingPart, clamp_part_size
from .upload_session import (
    PartResult,
    ResumeState,
    UploadSession,
    UploadState,
    UploadTarget,
)
from .uploader import StreamUploader

__all__ = [
    "StreamUploader",
    "UploadSession",
    "UploadState",
    "UploadTarget",
    "ResumeState",
    "PartResult",
    "UploadEvent",
    "EventEmitter",
    "PartBuffer",
    "PendingPart",
    "MIN_PART_SIZE",
    "clamp_part_size",
    "ConcurrencyGate",
    "GateClosedError",
    "clamp_concurrency",
    "UploadError",
    "CreateUploadError",
    "PartUploadError",
    "CompleteUploadError",
    "AbortUploadError",
    "UploadCancelledError",
    "MissingStorageClientError",
    "StorageBackendNotConfiguredError",
]
