"""Raw-REPL command session over a byte transport."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import sys
import threading
import time
from typing import Callable

from .classifier import ResponseClassifier
from .commands import (
    CONTENT_ENCODINGS,
    DEFAULT_ERROR_MARKER,
    DEFAULT_SENTINEL,
    Command,
    ListCommand,
    ReadCommand,
    ScriptBuilder,
)
from .errors import BusyError, ProtocolError, TransportFailure
from .framing import DeadlinePolicy, collect
from .listing import LISTING_CODECS, listing_codec
from .responses import ClassifiedResponse
from .transport import Transport, TransportError, TransportTimeout

CTRL_A = b"\x01"
CTRL_B = b"\x02"
CTRL_D = b"\x04"
INTERRUPT = b"\r\x03\x03"
LINE_END = b"\r\n"


class SessionState(str, Enum):
    IDLE = "idle"
    ENTERING_RAW_MODE = "entering_raw_mode"
    SUBMITTING_PAYLOAD = "submitting_payload"
    TRIGGERING_EXECUTION = "triggering_execution"
    AWAITING_RESPONSE = "awaiting_response"
    FAULTED = "faulted"


@dataclass
class SessionConfig:
    sentinel: str = DEFAULT_SENTINEL
    error_marker: str = DEFAULT_ERROR_MARKER
    read_size: int = 4096
    read_timeout: float = 0.1
    response_timeout: float = 10.0
    max_response_bytes: int = 4 * 1024 * 1024
    interrupt_running: bool = True
    drain_timeout: float = 0.05
    listing_codec: str = "delimited"
    content_encoding: str = "text"
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.sentinel:
            raise ValueError("sentinel must not be empty")
        if not self.error_marker:
            raise ValueError("error_marker must not be empty")
        if self.sentinel == self.error_marker:
            raise ValueError("sentinel and error_marker must differ")
        if self.listing_codec not in LISTING_CODECS:
            raise ValueError(f"Unsupported listing codec: {self.listing_codec}")
        if self.content_encoding not in CONTENT_ENCODINGS:
            raise ValueError(f"Unsupported content encoding: {self.content_encoding}")
        if self.read_size < 1:
            raise ValueError("read_size must be >= 1")
        if self.max_response_bytes < 1:
            raise ValueError("max_response_bytes must be >= 1")
        if self.read_timeout <= 0 or self.response_timeout <= 0:
            raise ValueError("read_timeout and response_timeout must be > 0")
        if self.drain_timeout < 0:
            raise ValueError("drain_timeout must be >= 0")

    def deadline_policy(self) -> DeadlinePolicy:
        return DeadlinePolicy(
            read_size=self.read_size,
            read_timeout=self.read_timeout,
            response_timeout=self.response_timeout,
            max_response_bytes=self.max_response_bytes,
        )


class Session:
    """Drives one command at a time through the raw-REPL handshake.

    Usage::

        with Session(transport, SessionConfig()) as session:
            response = session.execute(ListCommand())

    The transport stays owned by the caller; ``disconnect`` leaves it open.
    """

    def __init__(
        self,
        transport: Transport,
        config: SessionConfig | None = None,
        *,
        logger: Callable[[str], None] | None = None,
    ) -> None:
        self.transport = transport
        self.config = config or SessionConfig()
        self.state = SessionState.IDLE
        self.last_fault_state: SessionState | None = None
        self._logger = logger
        self._lock = threading.Lock()
        self._connected = False
        self._presence_asserted = False

        codec = listing_codec(self.config.listing_codec)
        self.builder = ScriptBuilder(
            sentinel=self.config.sentinel,
            error_marker=self.config.error_marker,
            listing_codec=codec,
            content_encoding=self.config.content_encoding,
        )
        self.classifier = ResponseClassifier(
            error_marker=self.config.error_marker,
            listing_codec=codec,
            content_encoding=self.config.content_encoding,
        )
        self._sentinel = self.config.sentinel.encode("utf-8")

    def _log(self, text: str) -> None:
        if self._logger is not None:
            self._logger(text)
        elif self.config.verbose:
            print(f"[picolink] {text}", file=sys.stderr)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def __enter__(self) -> Session:
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    def connect(self) -> None:
        if self._connected:
            raise RuntimeError("Already connected")
        if self.transport.presence_required():
            self.transport.set_presence(True)
            self._presence_asserted = True
            self._log("presence signal asserted")
        self._connected = True
        self._log(f"connected via {self.transport.name()}")

    def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False

        try:
            self.transport.write(CTRL_B)
        except TransportError as exc:
            self._log(f"failed to leave raw mode: {exc}")

        if self._presence_asserted:
            self._presence_asserted = False
            try:
                self.transport.set_presence(False)
            except TransportError as exc:
                self._log(f"failed to deassert presence signal: {exc}")
            else:
                self._log("presence signal deasserted")
        self._log("disconnected")

    def list_files(self, path: str = "") -> ClassifiedResponse:
        return self.execute(ListCommand(path))

    def read_file(self, path: str) -> ClassifiedResponse:
        return self.execute(ReadCommand(path))

    def execute(self, command: Command) -> ClassifiedResponse:
        if not self._connected:
            raise RuntimeError("Session is not connected")
        if not self._lock.acquire(blocking=False):
            raise BusyError(f"A command is already in flight (state={self.state.value})")

        try:
            return self._run(command)
        except ProtocolError as exc:
            self.last_fault_state = self.state
            self._enter(SessionState.FAULTED)
            self._log(f"{type(exc).__name__} while {self.last_fault_state.value}: {exc}")
            raise
        finally:
            self._enter(SessionState.IDLE)
            self._lock.release()

    def _run(self, command: Command) -> ClassifiedResponse:
        script = self.builder.build(command)

        self._enter(SessionState.ENTERING_RAW_MODE)
        if self.config.interrupt_running:
            self._write(INTERRUPT)
        self._discard_stale_input()
        self._write(CTRL_A)

        self._enter(SessionState.SUBMITTING_PAYLOAD)
        self._write(script.encode("utf-8") + LINE_END)

        self._enter(SessionState.TRIGGERING_EXECUTION)
        self._write(CTRL_D)

        self._enter(SessionState.AWAITING_RESPONSE)
        frame = collect(self.transport, self._sentinel, self.config.deadline_policy())
        self._log(f"collected {len(frame)} byte frame")
        return self.classifier.classify(frame, command)

    def _discard_stale_input(self) -> None:
        """Reads until the line stays quiet for ``drain_timeout``.

        Output of an earlier command that timed out, or of its ``finally``
        block run by the interrupt, would otherwise end the next frame early.
        """

        if self.config.drain_timeout <= 0:
            return
        discarded = 0
        deadline = time.monotonic() + self.config.response_timeout
        while True:
            if time.monotonic() >= deadline:
                self._log(f"input still active after {self.config.response_timeout:.3f}s, continuing")
                break
            try:
                chunk = self.transport.read(self.config.read_size, self.config.drain_timeout)
            except TransportTimeout:
                break
            except TransportError as exc:
                raise TransportFailure(f"Transport read failed while {self.state.value}: {exc}") from exc
            discarded += len(chunk)
        if discarded:
            self._log(f"discarded {discarded} stale bytes")

    def _write(self, data: bytes) -> None:
        try:
            self.transport.write(data)
        except TransportError as exc:
            raise TransportFailure(f"Transport write failed while {self.state.value}: {exc}") from exc

    def _enter(self, state: SessionState) -> None:
        if state is not self.state:
            self._log(f"state {self.state.value} -> {state.value}")
        self.state = state
