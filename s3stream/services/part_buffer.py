"""Accumulates producer bytes and cuts them into part-sized payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from s3stream.common.config import MIN_PART_SIZE_BYTES

MIN_PART_SIZE = MIN_PART_SIZE_BYTES


def clamp_part_size(size: int) -> int:
    """Saturate part sizes below the backend minimum up to that minimum."""
    return max(int(size), MIN_PART_SIZE)


@dataclass(frozen=True, slots=True)
class PendingPart:
    """A payload cut from the stream, numbered at the moment it was cut."""

    part_number: int
    payload: bytes

    @property
    def size(self) -> int:
        return len(self.payload)


class PartBuffer:
    """Growing byte buffer that yields exactly ``part_size`` sized cuts.

    ``part_size`` is a callable so the owner can change the size between
    writes; each cut reads the current value.
    """

    def __init__(self, part_size: Callable[[], int]) -> None:
        self._part_size = part_size
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """Append ``data`` and return every full part now available."""
        self._buffer.extend(data)
        size = self._part_size()
        parts: list[bytes] = []
        while len(self._buffer) >= size:
            parts.append(bytes(self._buffer[:size]))
            del self._buffer[:size]
        return parts

    def flush(self) -> bytes | None:
        """Return the remaining bytes as the final part, or None when empty."""
        if not self._buffer:
            return None
        remainder = bytes(self._buffer)
        self._buffer.clear()
        return remainder

    def clear(self) -> None:
        self._buffer.clear()
