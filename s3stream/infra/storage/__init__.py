"""Object storage abstraction layer.

This module provides a protocol-based abstraction for the multipart upload
backend, with an S3-compatible implementation (AWS S3, MinIO, ...).
"""

from .client import (
    CompletedPart,
    MultipartUpload,
    StorageClient,
    StorageError,
    UploadedPart,
)

__all__ = [
    "CompletedPart",
    "MultipartUpload",
    "StorageClient",
    "StorageError",
    "UploadedPart",
]
