"""Stream bytes of unknown length into S3 multipart uploads."""

from s3stream.services import (
    PartResult,
    ResumeState,
    StreamUploader,
    UploadError,
    UploadEvent,
    UploadSession,
    UploadState,
    UploadTarget,
)

__version__ = "0.1.0"

__all__ = [
    "PartResult",
    "ResumeState",
    "StreamUploader",
    "UploadError",
    "UploadEvent",
    "UploadSession",
    "UploadState",
    "UploadTarget",
]
