"""Bounded dispatch of part uploads onto worker threads.

The gate is the backpressure point of the engine: ``submit`` blocks the
producer thread while ``limit`` uploads are unresolved.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from s3stream.infra.observability.metrics import PARTS_IN_FLIGHT


class GateClosedError(RuntimeError):
    """Raised when submitting to a gate that has been shut down."""


def clamp_concurrency(limit: int) -> int:
    """Saturate concurrency requests below 1 up to 1."""
    return max(int(limit), 1)


class ConcurrencyGate:
    """Runs submitted callables with at most ``limit`` of them unresolved."""

    def __init__(self, limit: int = 1, *, thread_name_prefix: str = "s3stream-part") -> None:
        self._limit = clamp_concurrency(limit)
        self._thread_name_prefix = thread_name_prefix
        self._cond = threading.Condition()
        self._in_flight = 0
        self._executor: ThreadPoolExecutor | None = None
        self._closed = False

    @property
    def limit(self) -> int:
        return self._limit

    @limit.setter
    def limit(self, value: int) -> None:
        with self._cond:
            self._limit = clamp_concurrency(value)
            # Running tasks finish on the old pool; new work gets a pool sized
            # for the new limit.
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None
            self._cond.notify_all()

    @property
    def in_flight(self) -> int:
        with self._cond:
            return self._in_flight

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run ``fn(*args)`` on a worker, blocking until a slot is free."""
        with self._cond:
            while self._in_flight >= self._limit and not self._closed:
                self._cond.wait()
            if self._closed:
                raise GateClosedError("cannot submit to a shut down gate")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._limit,
                    thread_name_prefix=self._thread_name_prefix,
                )
            self._in_flight += 1
            PARTS_IN_FLIGHT.inc()
            try:
                future = self._executor.submit(fn, *args)
            except BaseException:
                self._release()
                raise
        future.add_done_callback(lambda _: self._release_locked())
        return future

    def _release(self) -> None:
        self._in_flight -= 1
        PARTS_IN_FLIGHT.dec()
        self._cond.notify_all()

    def _release_locked(self) -> None:
        with self._cond:
            self._release()

    def drain(self, timeout: float | None = None) -> bool:
        """Wait until nothing is in flight; False if ``timeout`` expired first."""
        with self._cond:
            return self._cond.wait_for(lambda: self._in_flight == 0, timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._cond:
            self._closed = True
            executor, self._executor = self._executor, None
            self._cond.notify_all()
        if executor is not None:
            executor.shutdown(wait=wait)
