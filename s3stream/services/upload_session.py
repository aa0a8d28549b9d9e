"""Upload session orchestration.

This module turns a stream of producer writes into a multipart upload: it
creates or resumes the backend upload, cuts the stream into parts, dispatches
them through a bounded gate, folds results in part-number order, and drives
the upload to completion or abort.
"""

from __future__ import annotations

import logging
import threading
import time
from bisect import insort
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from s3stream.infra.observability.metrics import (
    PART_BYTES,
    PART_LATENCY,
    PARTS,
    SESSIONS,
)
from s3stream.infra.storage.client import CompletedPart, StorageClient
from s3stream.services.base import (
    AbortUploadError,
    CompleteUploadError,
    CreateUploadError,
    MissingStorageClientError,
    PartUploadError,
    UploadCancelledError,
    UploadError,
)
from s3stream.services.concurrency import ConcurrencyGate, GateClosedError
from s3stream.services.events import EventEmitter, Handler, UploadEvent
from s3stream.services.part_buffer import (
    MIN_PART_SIZE,
    PartBuffer,
    PendingPart,
    clamp_part_size,
)

logger = logging.getLogger("s3stream.upload")


class UploadState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ABORTING = "aborting"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {UploadState.COMPLETED, UploadState.ABORTED, UploadState.FAILED}
)


@dataclass(frozen=True, slots=True)
class UploadTarget:
    """Destination object of an upload."""

    bucket: str
    key: str
    content_type: str | None = None
    metadata: dict[str, str] | None = field(default=None, compare=False)

    @classmethod
    def from_mapping(cls, destination: Mapping[str, Any]) -> "UploadTarget":
        """Build a target from an S3 style ``{"Bucket": ..., "Key": ...}`` mapping."""
        try:
            bucket = destination["Bucket"]
            key = destination["Key"]
        except KeyError as exc:
            raise ValueError(f"destination is missing {exc.args[0]}") from exc
        metadata = destination.get("Metadata")
        return cls(
            bucket=str(bucket),
            key=str(key),
            content_type=destination.get("ContentType"),
            metadata=dict(metadata) if metadata else None,
        )


@dataclass(frozen=True, slots=True)
class ResumeState:
    """A previously started upload to continue.

    ``parts`` must already be ascending and gap free: new part numbers are
    derived from ``len(parts)`` only, the supplied numbers are not inspected.
    """

    upload_id: str
    parts: tuple[CompletedPart, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ResumeState":
        """Build from ``{"UploadId": ..., "Parts": [{"PartNumber": ..., "ETag": ...}]}``."""
        upload_id = data.get("UploadId")
        if not upload_id:
            raise ValueError("resume state requires an UploadId")
        parts = tuple(
            CompletedPart(part_number=int(item["PartNumber"]), etag=str(item["ETag"]))
            for item in data.get("Parts") or ()
        )
        return cls(upload_id=str(upload_id), parts=parts)


@dataclass(frozen=True, slots=True)
class PartResult:
    """Outcome of one successful part upload."""

    part_number: int
    etag: str
    received_size: int
    uploaded_size: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "ETag": self.etag,
            "PartNumber": self.part_number,
            "receivedSize": self.received_size,
            "uploadedSize": self.uploaded_size,
        }


class UploadSession:
    """A writable sink that streams its input into one multipart upload.

    Events (see ``UploadEvent``): ``ready(upload_id)`` once the upload exists,
    ``part(PartResult)`` per uploaded part, ``uploaded()`` on completion and
    ``error(UploadError)`` at most once when the session fails. Nothing is
    emitted after the session reaches a terminal state.

    ``write`` blocks while ``concurrent_parts`` uploads are in flight.
    ``close`` marks the end of input and blocks until the session is terminal.
    """

    def __init__(
        self,
        storage: StorageClient | None,
        target: UploadTarget,
        *,
        resume: ResumeState | None = None,
        part_size: int = MIN_PART_SIZE,
        concurrency: int = 1,
    ) -> None:
        if storage is None:
            raise MissingStorageClientError(
                "A storage client is required to create an upload session"
            )
        self._storage = storage
        self.target = target
        self._resume = resume
        self._part_size = clamp_part_size(part_size)
        self._gate = ConcurrencyGate(concurrency)
        self._buffer = PartBuffer(lambda: self._part_size)
        self._events = EventEmitter()

        # _lock guards bookkeeping and event emission; _write_lock serializes
        # the producer path (write/close).
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._finished = threading.Event()

        self._state = UploadState.PENDING
        self._upload_id: str | None = None
        self._next_part_number = 1
        self._completed: list[CompletedPart] = []
        self._ended = False
        self._error: UploadError | None = None
        self.received_bytes = 0
        self.uploaded_bytes = 0

    # -- configuration -------------------------------------------------

    def max_part_size(self, size: int) -> int:
        """Set the part size, clamped up to the 5 MiB backend minimum."""
        self._part_size = clamp_part_size(size)
        return self._part_size

    def get_max_part_size(self) -> int:
        return self._part_size

    def concurrent_parts(self, limit: int) -> int:
        """Set how many parts may upload at once, clamped to at least 1."""
        self._gate.limit = limit
        return self._gate.limit

    def get_concurrent_parts(self) -> int:
        return self._gate.limit

    # -- observable state ----------------------------------------------

    @property
    def state(self) -> UploadState:
        with self._lock:
            return self._state

    @property
    def upload_id(self) -> str | None:
        return self._upload_id

    @property
    def next_part_number(self) -> int:
        with self._lock:
            return self._next_part_number

    @property
    def completed_parts(self) -> tuple[CompletedPart, ...]:
        with self._lock:
            return tuple(self._completed)

    @property
    def error(self) -> UploadError | None:
        return self._error

    def on(self, event: UploadEvent | str, handler: Handler) -> Handler:
        return self._events.on(event, handler)

    def off(self, event: UploadEvent | str, handler: Handler) -> None:
        self._events.off(event, handler)

    # -- producer API --------------------------------------------------

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """Buffer ``data`` and dispatch every full part it completes."""
        chunk = bytes(data)
        with self._write_lock:
            if self._ended:
                raise ValueError("write after close")
            if not self._ensure_started():
                return len(chunk)
            with self._lock:
                if self._state is not UploadState.ACTIVE:
                    return len(chunk)
                self.received_bytes += len(chunk)
            for payload in self._buffer.feed(chunk):
                if not self._dispatch(payload):
                    self._buffer.clear()
                    break
        return len(chunk)

    def writelines(self, chunks: Iterable[bytes]) -> None:
        for chunk in chunks:
            self.write(chunk)

    def close(self) -> UploadState:
        """Signal end of input, then wait for completion or failure."""
        with self._write_lock:
            if not self._ended:
                self._ended = True
                if self._ensure_started():
                    final = self._buffer.flush()
                    if final is not None:
                        self._dispatch(final)
                self._buffer.clear()
        self._gate.drain()
        self._complete()
        self._finished.wait()
        return self.state

    def abort(self) -> UploadState:
        """Cancel the upload from the producer side."""
        error = UploadCancelledError("Upload cancelled by producer")
        with self._lock:
            state = self._state
            if state is UploadState.PENDING:
                self._finish(UploadState.ABORTED, error)
            elif state is UploadState.ACTIVE:
                self._state = UploadState.ABORTING
        if state is UploadState.ACTIVE:
            self._abort_backend(error)
        self._finished.wait()
        return self.state

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the session is terminal; False on timeout."""
        return self._finished.wait(timeout)

    @property
    def closed(self) -> bool:
        return self._ended

    def __enter__(self) -> "UploadSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    # -- state machine -------------------------------------------------

    def _ensure_started(self) -> bool:
        """Create or resume the backend upload on first use; True when active."""
        with self._lock:
            if self._state is not UploadState.PENDING:
                return self._state is UploadState.ACTIVE

        if self._resume is not None:
            with self._lock:
                self._upload_id = self._resume.upload_id
                self._completed = list(self._resume.parts)
                self._next_part_number = len(self._resume.parts) + 1
                self._state = UploadState.ACTIVE
            logger.info(
                "upload_resumed upload_id=%s bucket=%s key=%s parts=%d",
                self._upload_id,
                self.target.bucket,
                self.target.key,
                len(self._completed),
                extra={"extra": self._log_context(resumed_parts=len(self._completed))},
            )
            self._events.emit(UploadEvent.READY, self._upload_id)
            return True

        try:
            upload = self._storage.init_multipart_upload(
                bucket=self.target.bucket,
                object_key=self.target.key,
                content_type=self.target.content_type,
                metadata=self.target.metadata,
            )
        except Exception as exc:
            error = CreateUploadError(
                f"Failed to create multipart upload for "
                f"{self.target.bucket}/{self.target.key}: {exc}"
            )
            error.__cause__ = exc
            self._finish(UploadState.FAILED, error)
            return False

        with self._lock:
            self._upload_id = upload.upload_id
            self._next_part_number = 1
            self._state = UploadState.ACTIVE
        logger.info(
            "upload_created upload_id=%s bucket=%s key=%s",
            self._upload_id,
            self.target.bucket,
            self.target.key,
            extra={"extra": self._log_context()},
        )
        self._events.emit(UploadEvent.READY, self._upload_id)
        return True

    def _dispatch(self, payload: bytes) -> bool:
        with self._lock:
            if self._state is not UploadState.ACTIVE:
                return False
            part = PendingPart(part_number=self._next_part_number, payload=payload)
            self._next_part_number += 1
        logger.debug(
            "part_dispatched upload_id=%s part_number=%d size=%d",
            self._upload_id,
            part.part_number,
            part.size,
        )
        try:
            self._gate.submit(self._upload_part, part)
        except GateClosedError:
            return False
        return True

    def _upload_part(self, part: PendingPart) -> None:
        """Worker body: upload one part and fold the outcome."""
        with self._lock:
            if self._state is not UploadState.ACTIVE:
                return

        started = time.perf_counter()
        try:
            uploaded = self._storage.upload_part(
                bucket=self.target.bucket,
                object_key=self.target.key,
                upload_id=self._upload_id,
                part_number=part.part_number,
                body=part.payload,
            )
        except Exception as exc:
            PARTS.labels(outcome="failure").inc()
            error = PartUploadError(
                f"Failed to upload part {part.part_number} of upload "
                f"{self._upload_id}: {exc}",
                part_number=part.part_number,
            )
            error.__cause__ = exc
            self._fail_part(error)
            return

        elapsed = time.perf_counter() - started
        PARTS.labels(outcome="success").inc()
        PART_BYTES.inc(part.size)
        PART_LATENCY.observe(elapsed)

        result = PartResult(
            part_number=part.part_number,
            etag=uploaded.etag,
            received_size=part.size,
            uploaded_size=part.size,
        )
        with self._lock:
            insort(
                self._completed,
                CompletedPart(part_number=result.part_number, etag=result.etag),
                key=lambda p: p.part_number,
            )
            self.uploaded_bytes += result.uploaded_size
            if self._state is not UploadState.ACTIVE:
                logger.debug(
                    "part_completed_after_stop upload_id=%s part_number=%d state=%s",
                    self._upload_id,
                    result.part_number,
                    self._state.value,
                )
                return
            logger.info(
                "part_uploaded upload_id=%s part_number=%d size=%d duration_ms=%.3f",
                self._upload_id,
                result.part_number,
                result.uploaded_size,
                round(elapsed * 1000, 3),
                extra={
                    "extra": self._log_context(
                        part_number=result.part_number,
                        size=result.uploaded_size,
                        duration_ms=round(elapsed * 1000, 3),
                    )
                },
            )
            self._events.emit(UploadEvent.PART, result)

    def _fail_part(self, error: PartUploadError) -> None:
        with self._lock:
            if self._state is not UploadState.ACTIVE:
                logger.warning(
                    "part_failed_after_stop upload_id=%s part_number=%d error=%s",
                    self._upload_id,
                    error.part_number,
                    error,
                )
                return
            self._state = UploadState.ABORTING
        logger.error(
            "part_failed upload_id=%s part_number=%d error=%s",
            self._upload_id,
            error.part_number,
            error,
            extra={"extra": self._log_context(part_number=error.part_number)},
        )
        self._abort_backend(error)

    def _abort_backend(self, cause: UploadError) -> None:
        """Abort the backend upload after ``cause``; both failures are kept."""
        final: UploadError = cause
        try:
            self._storage.abort_multipart_upload(
                bucket=self.target.bucket,
                object_key=self.target.key,
                upload_id=self._upload_id,
            )
        except Exception as exc:
            final = AbortUploadError(
                f"Failed to abort multipart upload {self._upload_id}: {exc} "
                f"(abort was triggered by: {cause})",
                cause=cause,
            )
            final.__cause__ = exc
        self._finish(UploadState.ABORTED, final)

    def _complete(self) -> None:
        with self._lock:
            if self._state is not UploadState.ACTIVE:
                return
            self._state = UploadState.COMPLETING
            parts = list(self._completed)

        try:
            self._storage.complete_multipart_upload(
                bucket=self.target.bucket,
                object_key=self.target.key,
                upload_id=self._upload_id,
                parts=parts,
            )
        except Exception as exc:
            error = CompleteUploadError(
                f"Failed to complete multipart upload {self._upload_id}: {exc}"
            )
            error.__cause__ = exc
            self._finish(UploadState.FAILED, error)
            return
        self._finish(UploadState.COMPLETED)

    def _finish(self, state: UploadState, error: UploadError | None = None) -> None:
        with self._lock:
            if self._state.is_terminal:
                return
            self._state = state
            self._error = error
            SESSIONS.labels(outcome=state.value).inc()
            if error is None:
                logger.info(
                    "upload_completed upload_id=%s parts=%d bytes=%d",
                    self._upload_id,
                    len(self._completed),
                    self.uploaded_bytes,
                    extra={"extra": self._log_context(parts=len(self._completed))},
                )
                self._events.emit(UploadEvent.UPLOADED)
            else:
                logger.error(
                    "upload_%s upload_id=%s error=%s",
                    state.value,
                    self._upload_id,
                    error,
                    extra={"extra": self._log_context(error=str(error))},
                )
                self._events.emit(UploadEvent.ERROR, error)
        self._gate.shutdown(wait=False)
        self._finished.set()

    def _log_context(self, **extra: Any) -> dict[str, Any]:
        return {
            "upload_id": self._upload_id,
            "bucket": self.target.bucket,
            "key": self.target.key,
            "state": self._state.value,
            **extra,
        }
