"""Raw byte transport over a POSIX serial file descriptor."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
import errno
import fcntl
import os
import select
import struct
import termios
import threading
import time
import tty

from .transport import TransportError, TransportTimeout


@dataclass
class SerialTransportConfig:
    serial_port: str | None = None
    serial_fd: int | None = None
    baud_rate: int = 115200
    write_timeout: float = 2.0
    configure_tty: bool = True
    assert_dtr: bool = False


class SerialTransportError(TransportError):
    """Raised when the serial transport fails."""


class SerialTransport:
    """Unframed byte transport over a tty or any other file descriptor."""

    def __init__(self, config: SerialTransportConfig) -> None:
        if not config.serial_port and config.serial_fd is None:
            raise SerialTransportError("Either serial_port or serial_fd must be provided")
        if config.serial_port and config.serial_fd is not None:
            raise SerialTransportError("Provide serial_port or serial_fd, not both")

        self.config = config
        self._fd: int | None = None
        self._lock = threading.RLock()
        self._closed = False

    def name(self) -> str:
        if self.config.serial_port:
            return f"serial:{self.config.serial_port}"
        return "serial:fd"

    def presence_required(self) -> bool:
        return self.config.assert_dtr

    def set_presence(self, asserted: bool) -> None:
        with self._lock:
            fd = self._ensure_open_locked()
            request = termios.TIOCMBIS if asserted else termios.TIOCMBIC
            try:
                fcntl.ioctl(fd, request, struct.pack("I", termios.TIOCM_DTR))
            except OSError as exc:
                raise SerialTransportError(f"Failed to {'assert' if asserted else 'clear'} DTR: {exc}") from exc

    def write(self, data: bytes) -> None:
        with self._lock:
            fd = self._ensure_open_locked()
            deadline = time.monotonic() + max(self.config.write_timeout, 0.001)
            view = memoryview(data)
            while view:
                try:
                    written = os.write(fd, view)
                except BlockingIOError:
                    written = 0
                except OSError as exc:
                    if exc.errno not in {errno.EAGAIN, errno.EWOULDBLOCK}:
                        raise SerialTransportError(f"Serial write failed: {exc}") from exc
                    written = 0

                if written > 0:
                    view = view[written:]
                    continue

                wait = deadline - time.monotonic()
                if wait <= 0:
                    raise SerialTransportError(f"Serial write timed out with {len(view)} bytes unsent")
                select.select([], [fd], [], wait)

    def read(self, max_len: int, timeout: float) -> bytes:
        with self._lock:
            fd = self._ensure_open_locked()
            ready, _, _ = select.select([fd], [], [], max(timeout, 0.0))
            if not ready:
                raise TransportTimeout(f"No serial data within {timeout:.3f}s")
            try:
                chunk = os.read(fd, max(max_len, 1))
            except BlockingIOError as exc:
                raise TransportTimeout("Serial data not ready") from exc
            except OSError as exc:
                if exc.errno in {errno.EAGAIN, errno.EWOULDBLOCK}:
                    raise TransportTimeout("Serial data not ready") from exc
                raise SerialTransportError(f"Serial read failed: {exc}") from exc

            if not chunk:
                raise SerialTransportError("Serial channel closed by peer")
            return chunk

    def close(self) -> None:
        with self._lock:
            self._closed = True
            fd, self._fd = self._fd, None
        if fd is not None:
            with contextlib.suppress(OSError):
                os.close(fd)

    def _ensure_open_locked(self) -> int:
        if self._closed:
            raise SerialTransportError("Transport is closed")
        if self._fd is None:
            self._fd = self._open_device()
        return self._fd

    def _open_device(self) -> int:
        if self.config.serial_fd is not None:
            fd = os.dup(self.config.serial_fd)
        else:
            device = os.path.expanduser(self.config.serial_port or "")
            try:
                fd = os.open(device, os.O_RDWR | os.O_NOCTTY | os.O_NONBLOCK)
            except OSError as exc:
                raise SerialTransportError(f"Cannot open {device}: {exc}") from exc

        try:
            os.set_blocking(fd, False)
            if self.config.configure_tty and os.isatty(fd):
                _set_raw_line(fd, self.config.baud_rate)
        except (OSError, termios.error) as exc:
            os.close(fd)
            raise SerialTransportError(f"Cannot prepare {self.name()}: {exc}") from exc
        return fd


def _set_raw_line(fd: int, baud_rate: int) -> None:
    """8N1 without echo or line editing; reads return whatever has arrived."""

    tty.setraw(fd, termios.TCSANOW)
    iflag, oflag, cflag, lflag, _ispeed, _ospeed, cc = termios.tcgetattr(fd)
    cflag = (cflag | termios.CLOCAL | termios.CREAD) & ~termios.CSTOPB
    # USB CDC ignores the rate; unknown rates fall back to 115200.
    speed = getattr(termios, f"B{baud_rate}", termios.B115200)
    cc[termios.VMIN] = 0
    cc[termios.VTIME] = 0
    termios.tcsetattr(fd, termios.TCSANOW, [iflag, oflag, cflag, lflag, speed, speed, cc])
