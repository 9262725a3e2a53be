"""
Serial transport layer.

The bridge only needs a blocking, line- and byte-oriented duplex channel with
finite timeouts. ``SerialTransport`` provides it on top of pyserial; tests and
the demo plug in other implementations of the ``Transport`` protocol.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import serial

from .config import SerialSettings
from .exceptions import TransportError

logger = logging.getLogger(__name__)

NEWLINE = b"\r\n"


class Transport(Protocol):
    def open(self) -> None: ...

    def close(self) -> None: ...

    @property
    def is_open(self) -> bool: ...

    def write(self, data: bytes) -> None: ...

    def write_line(self, data: bytes) -> None: ...

    def write_byte(self, value: int) -> None: ...

    def read_line(self) -> bytes: ...

    def read_exact(self, size: int) -> bytes: ...

    def read_byte(self) -> int: ...

    def read_existing(self) -> bytes: ...

    def reset_input(self) -> None: ...


class SerialTransport:
    """Blocking pyserial channel; every timeout surfaces as TransportError."""

    def __init__(self, settings: SerialSettings):
        self.settings = settings
        self._serial: Optional[serial.Serial] = None

    def open(self) -> None:
        try:
            self._serial = serial.Serial(
                port=self.settings.port,
                baudrate=self.settings.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.settings.timeout,
                write_timeout=self.settings.write_timeout,
            )
        except serial.SerialException as exc:
            raise TransportError(f"Failed to open {self.settings.port}: {exc}") from exc
        logger.info("Opened serial port %s at %d bps", self.settings.port, self.settings.baudrate)

    def close(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except serial.SerialException as exc:
            logger.warning("Error closing %s: %s", self.settings.port, exc)
        finally:
            self._serial = None
        logger.info("Closed serial port %s", self.settings.port)

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def _port(self) -> serial.Serial:
        if self._serial is None or not self._serial.is_open:
            raise TransportError("Serial port not open")
        return self._serial

    def write(self, data: bytes) -> None:
        port = self._port()
        try:
            count = port.write(data)
            port.flush()
        except serial.SerialTimeoutException as exc:
            raise TransportError(f"Write timed out after {self.settings.write_timeout}s") from exc
        except serial.SerialException as exc:
            raise TransportError(f"Send failed: {exc}") from exc
        if count is not None and count != len(data):
            raise TransportError(f"Short write ({count} of {len(data)} bytes)")
        logger.debug("TX (%d bytes): %s", len(data), data.hex(" "))

    def write_line(self, data: bytes) -> None:
        self.write(data + NEWLINE)

    def write_byte(self, value: int) -> None:
        self.write(bytes([value & 0xFF]))

    def read_line(self) -> bytes:
        port = self._port()
        try:
            raw = port.read_until(NEWLINE)
        except serial.SerialException as exc:
            raise TransportError(f"Receive failed: {exc}") from exc
        if not raw.endswith(b"\n"):
            raise TransportError(
                f"No complete line within {self.settings.timeout}s (got {raw!r})"
            )
        logger.debug("RX line: %r", raw)
        return raw.rstrip(b"\r\n")

    def read_exact(self, size: int) -> bytes:
        port = self._port()
        try:
            data = port.read(size)
        except serial.SerialException as exc:
            raise TransportError(f"Receive failed: {exc}") from exc
        if len(data) != size:
            raise TransportError(
                f"Timeout after {self.settings.timeout}s: {len(data)} of {size} bytes received"
            )
        logger.debug("RX (%d bytes): %s", len(data), data.hex(" "))
        return data

    def read_byte(self) -> int:
        return self.read_exact(1)[0]

    def read_existing(self) -> bytes:
        port = self._port()
        try:
            waiting = port.in_waiting
            data = port.read(waiting) if waiting else b""
        except serial.SerialException as exc:
            raise TransportError(f"Receive failed: {exc}") from exc
        if data:
            logger.debug("RX existing (%d bytes): %s", len(data), data.hex(" "))
        return data

    def reset_input(self) -> None:
        port = self._port()
        try:
            port.reset_input_buffer()
        except serial.SerialException as exc:
            raise TransportError(f"Input reset failed: {exc}") from exc

    def __enter__(self) -> "SerialTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"SerialTransport({self.settings.port}, {self.settings.baudrate}, {status})"
