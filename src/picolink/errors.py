"""Protocol-level error types raised by the picolink engine."""

from __future__ import annotations

from enum import Enum


class ProtocolErrorKind(str, Enum):
    BUSY = "busy"
    TRANSPORT_FAILURE = "transport_failure"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    OVERFLOW = "overflow"


class ProtocolError(RuntimeError):
    """Raised when a command could not complete at the protocol level."""

    kind: ProtocolErrorKind = ProtocolErrorKind.MALFORMED


class BusyError(ProtocolError):
    """Raised when a command is issued while another one is in flight."""

    kind = ProtocolErrorKind.BUSY


class TransportFailure(ProtocolError):
    """Raised when the transport failed for a reason other than a read timeout."""

    kind = ProtocolErrorKind.TRANSPORT_FAILURE


class ResponseTimeout(ProtocolError):
    """Raised when the sentinel did not arrive before the response deadline."""

    kind = ProtocolErrorKind.TIMEOUT


class MalformedResponse(ProtocolError):
    """Raised when a complete frame does not parse as the expected encoding."""

    kind = ProtocolErrorKind.MALFORMED


class ResponseTooLarge(ProtocolError):
    """Raised when a response grows past the configured size ceiling."""

    kind = ProtocolErrorKind.OVERFLOW
