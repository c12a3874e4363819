"""Command line access to files on a MicroPython board."""

from __future__ import annotations

import argparse
import glob
from pathlib import Path, PurePosixPath
import sys

from .commands import DEFAULT_ERROR_MARKER, DEFAULT_SENTINEL
from .errors import ProtocolError
from .listing import LISTING_CODECS
from .pyserial_transport import (
    PICO_PRODUCT_ID,
    PICO_VENDOR_ID,
    PySerialTransport,
    PySerialTransportConfig,
    list_candidate_ports,
)
from .responses import ClassifiedResponse, Content, Listing, RemoteError
from .serial_transport import SerialTransport, SerialTransportConfig
from .session import Session, SessionConfig
from .transport import Transport, TransportError

_PROG = "picolink"


def _candidate_ports(show_all: bool) -> list[str]:
    if show_all:
        ports = list_candidate_ports(vid=None, pid=None)
        for pattern in ("/dev/ttyACM*", "/dev/ttyUSB*"):
            ports.extend(glob.glob(pattern))
        return sorted(set(ports))
    return list_candidate_ports(vid=PICO_VENDOR_ID, pid=PICO_PRODUCT_ID)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=_PROG, description="List and fetch files on a MicroPython board")
    parser.add_argument(
        "--transport",
        choices=("serial", "pyserial"),
        default="serial",
        help="Byte transport used to reach the board",
    )
    parser.add_argument(
        "--port",
        default="/dev/ttyACM0",
        help="Serial device path (or pyserial URL with --transport pyserial)",
    )
    parser.add_argument(
        "--baud",
        type=int,
        default=115200,
        help="Requested serial baud rate",
    )
    parser.add_argument(
        "--read-timeout-ms",
        type=int,
        default=100,
        help="Milliseconds to wait on each individual read",
    )
    parser.add_argument(
        "--drain-timeout-ms",
        type=int,
        default=50,
        help="Quiet period that ends discarding of stale input before each command (0 disables)",
    )
    parser.add_argument(
        "--response-timeout",
        type=float,
        default=10.0,
        help="Maximum seconds to wait for a complete response",
    )
    parser.add_argument(
        "--sentinel",
        default=DEFAULT_SENTINEL,
        help="Marker printed by the remote script after its output",
    )
    parser.add_argument(
        "--error-marker",
        default=DEFAULT_ERROR_MARKER,
        help="Prefix printed by the remote script when it fails",
    )
    parser.add_argument(
        "--listing-codec",
        choices=LISTING_CODECS,
        default="delimited",
        help="Wire encoding for directory listings",
    )
    parser.add_argument(
        "--assert-dtr",
        action="store_true",
        help="Assert DTR while connected (needed by some USB CDC stacks)",
    )
    parser.add_argument(
        "--no-interrupt",
        action="store_true",
        help="Do not send Ctrl-C before entering raw mode",
    )
    parser.add_argument(
        "--no-configure-tty",
        action="store_true",
        help="Do not apply raw termios settings to the serial port",
    )
    parser.add_argument("--verbose", action="store_true", help="Log protocol activity to stderr")

    commands = parser.add_subparsers(dest="command", required=True)

    ports = commands.add_parser("ports", help="List candidate serial ports")
    ports.add_argument("--all", action="store_true", help="Include ports that are not a Raspberry Pi Pico")

    ls = commands.add_parser("ls", help="List remote files")
    ls.add_argument("path", nargs="?", default="", help="Remote directory (default: working directory)")

    cat = commands.add_parser("cat", help="Print a remote text file")
    cat.add_argument("path", help="Remote file path")

    get = commands.add_parser("get", help="Download a remote file")
    get.add_argument("path", help="Remote file path")
    get.add_argument("--output", "-o", help="Local destination (default: remote basename)")
    return parser


def _build_transport(args: argparse.Namespace) -> Transport:
    if args.transport == "pyserial":
        return PySerialTransport(
            PySerialTransportConfig(
                port=args.port,
                baud_rate=max(args.baud, 1),
                assert_dtr=args.assert_dtr,
            )
        )

    if not Path(args.port).exists():
        raise TransportError(f"serial port does not exist: {args.port}")
    return SerialTransport(
        SerialTransportConfig(
            serial_port=args.port,
            baud_rate=max(args.baud, 1),
            configure_tty=not args.no_configure_tty,
            assert_dtr=args.assert_dtr,
        )
    )


def _build_session_config(args: argparse.Namespace) -> SessionConfig:
    return SessionConfig(
        sentinel=args.sentinel,
        error_marker=args.error_marker,
        read_timeout=max(args.read_timeout_ms / 1000.0, 0.001),
        response_timeout=max(args.response_timeout, 0.1),
        drain_timeout=max(args.drain_timeout_ms, 0) / 1000.0,
        interrupt_running=not args.no_interrupt,
        listing_codec=args.listing_codec,
        content_encoding="base64" if args.command == "get" else "text",
        verbose=args.verbose,
    )


def _report(args: argparse.Namespace, response: ClassifiedResponse) -> int:
    if isinstance(response, RemoteError):
        print(f"{_PROG}: remote error: {response.message}", file=sys.stderr)
        return 1

    if isinstance(response, Listing):
        for name in response.names:
            print(name)
        return 0

    if not isinstance(response, Content):
        raise TypeError(f"Unexpected response: {response!r}")

    if args.command == "cat":
        sys.stdout.write(response.text)
        sys.stdout.flush()
        return 0

    destination = Path(args.output or PurePosixPath(args.path).name)
    destination.write_bytes(response.data)
    print(f"Downloaded {args.path} -> {destination} ({len(response.data)} bytes)")
    return 0


def _run_command(session: Session, args: argparse.Namespace) -> ClassifiedResponse:
    if args.command == "ls":
        return session.list_files(args.path)
    return session.read_file(args.path)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "ports":
        candidates = _candidate_ports(args.all)
        if not candidates:
            print("No serial candidates found")
            return 1
        for port in candidates:
            print(port)
        return 0

    try:
        config = _build_session_config(args)
        transport = _build_transport(args)
    except (TransportError, ValueError) as exc:
        print(f"{_PROG}: {exc}", file=sys.stderr)
        return 2

    try:
        with Session(transport, config) as session:
            response = _run_command(session, args)
        return _report(args, response)
    except ProtocolError as exc:
        print(f"{_PROG}: {exc} (retry or reconnect)", file=sys.stderr)
        return 1
    except TransportError as exc:
        print(f"{_PROG}: {exc}", file=sys.stderr)
        return 2
    except OSError as exc:
        print(f"{_PROG}: {exc}", file=sys.stderr)
        return 1
    finally:
        transport.close()


if __name__ == "__main__":
    raise SystemExit(main())
