"""Sentinel-terminated frame collection over an unframed byte transport."""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Callable

from .errors import ResponseTimeout, ResponseTooLarge, TransportFailure
from .transport import Transport, TransportError, TransportTimeout


@dataclass
class DeadlinePolicy:
    read_size: int = 4096
    read_timeout: float = 0.1
    response_timeout: float = 10.0
    max_response_bytes: int = 4 * 1024 * 1024


class FrameAssembler:
    """Accumulates chunks until ``sentinel`` shows up.

    ``feed`` returns the bytes preceding the first sentinel once it has been
    seen, and ``None`` until then. Anything after the sentinel is dropped.
    """

    def __init__(self, sentinel: bytes, max_bytes: int | None = None) -> None:
        if not sentinel:
            raise ValueError("sentinel must not be empty")
        self.sentinel = sentinel
        self.max_bytes = max_bytes
        self._buffer = bytearray()
        self._searched = 0

    def __len__(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer = bytearray()
        self._searched = 0

    def feed(self, chunk: bytes) -> bytes | None:
        if not chunk:
            return None
        self._buffer.extend(chunk)

        # A sentinel may straddle the previous chunk boundary.
        start = max(self._searched - len(self.sentinel) + 1, 0)
        index = self._buffer.find(self.sentinel, start)
        if index >= 0:
            frame = bytes(self._buffer[:index])
            self.reset()
            return frame

        self._searched = len(self._buffer)
        if self.max_bytes is not None and len(self._buffer) > self.max_bytes:
            size = len(self._buffer)
            self.reset()
            raise ResponseTooLarge(f"Response exceeded {self.max_bytes} bytes without a sentinel ({size} buffered)")
        return None


def collect(
    transport: Transport,
    sentinel: bytes,
    policy: DeadlinePolicy,
    *,
    clock: Callable[[], float] = time.monotonic,
    assembler: FrameAssembler | None = None,
) -> bytes:
    """Read from ``transport`` until ``sentinel`` arrives and return the preceding bytes.

    Read timeouts are retried until ``policy.response_timeout`` elapses.
    """

    frames = assembler or FrameAssembler(sentinel, max_bytes=policy.max_response_bytes)
    deadline = clock() + max(policy.response_timeout, 0.0)
    read_size = max(policy.read_size, 1)

    try:
        while True:
            remaining = deadline - clock()
            if remaining <= 0:
                raise ResponseTimeout(
                    f"No response sentinel within {policy.response_timeout:.3f}s ({len(frames)} bytes discarded)"
                )

            try:
                chunk = transport.read(read_size, min(policy.read_timeout, remaining))
            except TransportTimeout:
                continue
            except TransportError as exc:
                raise TransportFailure(f"Transport read failed: {exc}") from exc

            frame = frames.feed(chunk)
            if frame is not None:
                return frame
    finally:
        frames.reset()
