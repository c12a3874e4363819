"""Byte transport interface consumed by the picolink session."""

from __future__ import annotations

from typing import Protocol


class TransportError(RuntimeError):
    """Raised when a transport operation fails."""


class TransportTimeout(TransportError):
    """Raised when a read returns no bytes within its timeout."""


class Transport(Protocol):
    """Minimal duplex byte channel consumed by the session."""

    def name(self) -> str:
        ...

    def write(self, data: bytes) -> None:
        ...

    def read(self, max_len: int, timeout: float) -> bytes:
        ...

    def presence_required(self) -> bool:
        ...

    def set_presence(self, asserted: bool) -> None:
        ...

    def close(self) -> None:
        ...
