from __future__ import annotations

import logging
import threading
from collections import defaultdict
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger("s3stream.upload")

Handler = Callable[..., Any]


class UploadEvent(str, Enum):
    READY = "ready"
    PART = "part"
    UPLOADED = "uploaded"
    ERROR = "error"


class EventEmitter:
    """Minimal thread-safe listener registry keyed by ``UploadEvent``."""

    def __init__(self) -> None:
        self._handlers: dict[UploadEvent, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def on(self, event: UploadEvent | str, handler: Handler) -> Handler:
        with self._lock:
            self._handlers[UploadEvent(event)].append(handler)
        return handler

    def off(self, event: UploadEvent | str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers[UploadEvent(event)]
            if handler in handlers:
                handlers.remove(handler)

    def listener_count(self, event: UploadEvent | str) -> int:
        with self._lock:
            return len(self._handlers[UploadEvent(event)])

    def emit(self, event: UploadEvent, *args: Any) -> None:
        with self._lock:
            handlers = list(self._handlers[event])
        for handler in handlers:
            try:
                handler(*args)
            except Exception:
                # Listener failures must not derail the upload bookkeeping.
                logger.exception(
                    "listener_error event=%s handler=%r",
                    event.value,
                    handler,
                    extra={"extra": {"event": event.value}},
                )
