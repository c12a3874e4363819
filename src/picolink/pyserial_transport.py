"""Cross-platform byte transport built on pyserial."""

from __future__ import annotations

from dataclasses import dataclass

import serial
from serial.tools import list_ports

from .transport import TransportError, TransportTimeout

PICO_VENDOR_ID = 0x2E8A
PICO_PRODUCT_ID = 0x0005


@dataclass
class PySerialTransportConfig:
    port: str
    baud_rate: int = 115200
    write_timeout: float = 2.0
    assert_dtr: bool = False


class PySerialTransportError(TransportError):
    """Raised when a pyserial operation fails."""


def list_candidate_ports(
    vid: int | None = PICO_VENDOR_ID,
    pid: int | None = PICO_PRODUCT_ID,
) -> list[str]:
    """Returns device paths of attached serial ports, filtered by USB id when given."""

    ports: list[str] = []
    for info in list_ports.comports():
        if vid is not None and info.vid != vid:
            continue
        if pid is not None and info.pid != pid:
            continue
        ports.append(info.device)
    return sorted(ports)


class PySerialTransport:
    """Byte transport over a ``serial.Serial`` (or any pyserial URL handler)."""

    def __init__(self, config: PySerialTransportConfig) -> None:
        self.config = config
        self._serial: serial.SerialBase | None = None
        self._closed = False

    def name(self) -> str:
        return f"pyserial:{self.config.port}"

    def presence_required(self) -> bool:
        return self.config.assert_dtr

    def set_presence(self, asserted: bool) -> None:
        port = self._ensure_open()
        try:
            port.dtr = asserted
        except (serial.SerialException, OSError) as exc:
            raise PySerialTransportError(f"Failed to {'assert' if asserted else 'clear'} DTR: {exc}") from exc

    def write(self, data: bytes) -> None:
        port = self._ensure_open()
        try:
            port.write(data)
            port.flush()
        except serial.SerialTimeoutException as exc:
            raise PySerialTransportError(f"Serial write timed out: {exc}") from exc
        except (serial.SerialException, OSError) as exc:
            raise PySerialTransportError(f"Serial write failed: {exc}") from exc

    def read(self, max_len: int, timeout: float) -> bytes:
        port = self._ensure_open()
        try:
            port.timeout = max(timeout, 0.0)
            chunk = port.read(1)
            if not chunk:
                raise TransportTimeout(f"No serial data within {timeout:.3f}s")
            waiting = min(port.in_waiting, max(max_len, 1) - 1)
            if waiting > 0:
                chunk += port.read(waiting)
        except (serial.SerialException, OSError) as exc:
            raise PySerialTransportError(f"Serial read failed: {exc}") from exc
        return chunk

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        port = self._serial
        self._serial = None
        if port is not None:
            try:
                port.close()
            except (serial.SerialException, OSError):
                pass

    def _ensure_open(self) -> serial.SerialBase:
        if self._closed:
            raise PySerialTransportError("Transport is closed")
        if self._serial is not None:
            return self._serial
        try:
            self._serial = serial.serial_for_url(
                self.config.port,
                baudrate=max(self.config.baud_rate, 1),
                write_timeout=max(self.config.write_timeout, 0.001),
            )
        except (serial.SerialException, ValueError) as exc:
            raise PySerialTransportError(f"Failed to open serial port {self.config.port}: {exc}") from exc
        return self._serial
