"""Mock storage client for testing upload sessions."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from s3stream.infra.storage.client import (
    CompletedPart,
    MultipartUpload,
    StorageError,
    UploadedPart,
)

# Object keys that make the matching operation fail. ABORT_FAIL also fails
# part uploads so that an abort is attempted.
CREATE_FAIL = "create-fail"
UPLOAD_FAIL = "upload-fail"
COMPLETE_FAIL = "complete-fail"
ABORT_FAIL = "abort-fail"


@dataclass
class MockStorageClient:
    """In-memory mock of StorageClient for testing.

    Part uploads can be held back with ``hold_parts()`` / ``release_parts()``
    to control completion timing; ``max_in_flight`` records the highest
    number of concurrently unresolved ``upload_part`` calls.
    """

    etag: str = "etag"
    fail_part_number: int | None = None
    uploads: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    in_flight: int = 0
    max_in_flight: int = 0
    _upload_counter: int = field(default=0)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _gate: threading.Event = field(default_factory=threading.Event, repr=False)

    def __post_init__(self) -> None:
        self._gate.set()

    def hold_parts(self) -> None:
        self._gate.clear()

    def release_parts(self) -> None:
        self._gate.set()

    def calls_named(self, name: str) -> list[dict[str, Any]]:
        with self._lock:
            return [kwargs for call, kwargs in self.calls if call == name]

    def _record(self, name: str, **kwargs: Any) -> None:
        with self._lock:
            self.calls.append((name, kwargs))

    def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> MultipartUpload:
        self._record(
            "init_multipart_upload",
            bucket=bucket,
            object_key=object_key,
            content_type=content_type,
            metadata=metadata,
        )
        if object_key == CREATE_FAIL:
            raise StorageError("Failed to create multipart upload: mock failure")
        with self._lock:
            self._upload_counter += 1
            upload_id = "upload-id" if self._upload_counter == 1 else (
                f"upload-id-{self._upload_counter}"
            )
            self.uploads[upload_id] = {
                "bucket": bucket,
                "object_key": object_key,
                "content_type": content_type,
                "metadata": metadata or {},
                "parts": {},
                "completed": False,
                "aborted": False,
            }
        return MultipartUpload(
            upload_id=upload_id, bucket=bucket, object_key=object_key
        )

    def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        body: bytes,
    ) -> UploadedPart:
        self._record(
            "upload_part",
            bucket=bucket,
            object_key=object_key,
            upload_id=upload_id,
            part_number=part_number,
            size=len(body),
        )
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self._gate.wait(timeout=5)
            failing_key = object_key in (UPLOAD_FAIL, ABORT_FAIL)
            if failing_key or part_number == self.fail_part_number:
                raise StorageError(f"Failed to upload part {part_number}: mock failure")
            with self._lock:
                upload = self.uploads.setdefault(upload_id, {"parts": {}})
                upload["parts"][part_number] = bytes(body)
            return UploadedPart(part_number=part_number, etag=self.etag)
        finally:
            with self._lock:
                self.in_flight -= 1

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: list[CompletedPart],
    ) -> None:
        self._record(
            "complete_multipart_upload",
            bucket=bucket,
            object_key=object_key,
            upload_id=upload_id,
            parts=list(parts),
        )
        if object_key == COMPLETE_FAIL:
            raise StorageError("Failed to complete multipart upload: mock failure")
        with self._lock:
            self.uploads.setdefault(upload_id, {"parts": {}})["completed"] = True

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        self._record(
            "abort_multipart_upload",
            bucket=bucket,
            object_key=object_key,
            upload_id=upload_id,
        )
        if object_key == ABORT_FAIL:
            raise StorageError("Failed to abort multipart upload: mock failure")
        with self._lock:
            if upload_id in self.uploads:
                self.uploads[upload_id]["aborted"] = True

    def uploaded_body(self, upload_id: str) -> bytes:
        """Test helper joining the stored parts in part-number order."""
        parts = self.uploads[upload_id]["parts"]
        return b"".join(parts[number] for number in sorted(parts))
