"""
In-process stand-in for the bridge microcontroller with a BMP180 attached.

``SimulatedBridge`` implements the ``Transport`` protocol and answers frames
in either encoding from a 256-byte register map. Defaults reproduce the
datasheet example device, so a full calibration + reading cycle yields
about 15.0 degC and 699.6 mbar. ``raw_pressure`` is the oversampling-0
count; the result register holds it left-aligned for every oversampling level.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Iterable, Optional, Set

from .exceptions import TransportError
from .frames import (
    CLEAR_BUFFER_ACK,
    CLEAR_BUFFER_BYTE,
    CLEAR_BUFFER_REPEAT,
    DIRECTION_READ,
    DIRECTION_WRITE,
    TAG_PRESENCE,
    TAG_READ,
    TAG_WRITE,
    TEXT_PRESENCE_HANDLE,
    TEXT_REQUEST_HANDLE,
    TEXT_REQUEST_HEADER,
    TEXT_RESPONSE_HANDLE,
    TEXT_RESPONSE_HEADER,
    TEXT_TERMINATOR,
    FrameEncoding,
)

logger = logging.getLogger(__name__)

DATASHEET_CALIBRATION: Dict[str, int] = {
    "AC1": 408,
    "AC2": -72,
    "AC3": -14383,
    "AC4": 32741,
    "AC5": 32757,
    "AC6": 23153,
    "B1": 6190,
    "B2": 4,
    "MB": -32768,
    "MC": -8711,
    "MD": 2868,
}
DATASHEET_UT = 27898
DATASHEET_UP = 23843

_CALIBRATION_BASE = 0xAA
_CALIBRATION_ORDER = ("AC1", "AC2", "AC3", "AC4", "AC5", "AC6", "B1", "B2", "MB", "MC", "MD")
_REG_CONTROL = 0xF4
_REG_RESULT = 0xF6
_CMD_TEMPERATURE = 0x2E
_CMD_PRESSURE = 0x34


class SimulatedBridge:
    """Scripted bridge firmware; each write call carries one complete frame."""

    def __init__(
        self,
        encoding: FrameEncoding | str = FrameEncoding.TEXT,
        *,
        device_address: Optional[int] = 0x77,
        calibration: Optional[Dict[str, int]] = None,
        raw_temperature: int = DATASHEET_UT,
        raw_pressure: int = DATASHEET_UP,
    ):
        self.encoding = FrameEncoding(encoding)
        self.device_address = device_address
        self.registers = bytearray(256)
        self.raw_temperature = raw_temperature
        self.raw_pressure = raw_pressure
        self.failing_registers: Set[int] = set()
        self.writes: list[bytes] = []
        self._pointer = 0
        self._clear_count = 0
        self._rx: Deque[bytes] = deque()
        self._open = False
        for index, name in enumerate(_CALIBRATION_ORDER):
            value = (calibration or DATASHEET_CALIBRATION)[name]
            reg = _CALIBRATION_BASE + 2 * index
            self.registers[reg:reg + 2] = (value & 0xFFFF).to_bytes(2, "big")

    # Transport protocol -------------------------------------------------

    def open(self) -> None:
        self._open = True
        if self.encoding is FrameEncoding.TEXT:
            flag = 1 if self.device_address is not None else 0
            address = self.device_address or 0
            self._queue_line(f"{TEXT_RESPONSE_HEADER},{TEXT_PRESENCE_HANDLE:04X},{flag:02X}{address:02X}")
        logger.info("Simulated bridge ready (%s encoding)", self.encoding.value)

    def close(self) -> None:
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def __enter__(self) -> "SimulatedBridge":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def write(self, data: bytes) -> None:
        self._require_open()
        self.writes.append(bytes(data))
        self._clear_count = 0
        self._dispatch(bytes(data))

    def _dispatch(self, data: bytes) -> None:
        if self.encoding is FrameEncoding.BINARY:
            self._handle_binary(bytes(data))
        else:
            self._handle_text(bytes(data))

    def write_line(self, data: bytes) -> None:
        self.write(data)

    def write_byte(self, value: int) -> None:
        self._require_open()
        self.writes.append(bytes([value]))
        if value == CLEAR_BUFFER_BYTE:
            self._clear_count += 1
            if self._clear_count == CLEAR_BUFFER_REPEAT:
                self._clear_count = 0
                self._rx.append(CLEAR_BUFFER_ACK.encode("ascii"))
            return
        self._clear_count = 0
        self._dispatch(bytes([value]))

    def read_line(self) -> bytes:
        self._require_open()
        pending = b"".join(self._rx)
        self._rx.clear()
        line, sep, rest = pending.partition(b"\r\n")
        if rest:
            self._rx.append(rest)
        if not sep:
            if pending:
                self._rx.append(pending)
            raise TransportError("Simulated bridge: no complete line pending")
        return line

    def read_exact(self, size: int) -> bytes:
        self._require_open()
        pending = b"".join(self._rx)
        self._rx.clear()
        if len(pending) < size:
            self._rx.append(pending)
            raise TransportError(f"Simulated bridge: {len(pending)} of {size} bytes pending")
        if len(pending) > size:
            self._rx.append(pending[size:])
        return pending[:size]

    def read_byte(self) -> int:
        return self.read_exact(1)[0]

    def read_existing(self) -> bytes:
        self._require_open()
        pending = b"".join(self._rx)
        self._rx.clear()
        return pending

    def reset_input(self) -> None:
        self._rx.clear()

    # Test hooks ---------------------------------------------------------

    def inject(self, data: bytes) -> None:
        """Queue unsolicited bytes, e.g. line noise or a stale frame."""
        self._rx.append(bytes(data))

    def fail_register(self, registers: Iterable[int]) -> None:
        """Answer reads selected by these register pointers with a bad length echo."""
        self.failing_registers.update(registers)

    # Firmware emulation -------------------------------------------------

    def _require_open(self) -> None:
        if not self._open:
            raise TransportError("Simulated bridge is closed")

    def _queue_line(self, text: str) -> None:
        self._rx.append(text.encode("ascii") + b"\r\n")

    def _handle_text(self, data: bytes) -> None:
        line = data.decode("ascii", errors="replace").strip()
        prefix = f"{TEXT_REQUEST_HEADER},{TEXT_REQUEST_HANDLE:04X},"
        if not line.startswith(prefix) or not line.endswith(TEXT_TERMINATOR):
            logger.debug("Simulated bridge ignoring %r", line)
            return
        body = line[len(prefix):-1]
        direction = int(body[0:2], 16)
        length = int(body[2:4], 16)
        head = f"{TEXT_RESPONSE_HEADER},{TEXT_RESPONSE_HANDLE:04X},"
        if direction == DIRECTION_WRITE:
            self._device_write(bytes.fromhex(body[4:4 + 2 * length]))
            self._queue_line(f"{head}{DIRECTION_WRITE:02X}{length:02X}")
        elif direction == DIRECTION_READ:
            payload = self._device_read(length)
            echoed = length + 1 if self._pointer in self.failing_registers else length
            self._queue_line(f"{head}{DIRECTION_READ:02X}{echoed:02X}{payload.hex().upper()}")

    def _handle_binary(self, data: bytes) -> None:
        tag = data[0]
        if tag == TAG_PRESENCE:
            present = self.device_address is not None
            self._rx.append(bytes([TAG_PRESENCE, 1 if present else 0]))
            if present:
                self._rx.append(bytes([self.device_address]))
        elif tag == TAG_WRITE:
            length = data[2]
            self._device_write(data[3:3 + length])
            self._rx.append(bytes([TAG_WRITE, length]))
        elif tag == TAG_READ:
            length = data[2]
            payload = self._device_read(length)
            echoed = length + 1 if self._pointer in self.failing_registers else length
            self._rx.append(bytes([TAG_READ, echoed & 0xFF]) + payload)
        else:
            logger.debug("Simulated bridge ignoring tag 0x%02X", tag)

    def _device_write(self, payload: bytes) -> None:
        if not payload:
            return
        self._pointer = payload[0]
        if self._pointer == _REG_CONTROL and len(payload) > 1:
            self._convert(payload[1])

    def _device_read(self, length: int) -> bytes:
        start = self._pointer
        return bytes(self.registers[(start + i) & 0xFF] for i in range(length))

    def _convert(self, command: int) -> None:
        if command == _CMD_TEMPERATURE:
            self.registers[_REG_RESULT:_REG_RESULT + 3] = (self.raw_temperature << 8).to_bytes(3, "big")
        elif command & 0x3F == _CMD_PRESSURE:
            self.registers[_REG_RESULT:_REG_RESULT + 3] = (self.raw_pressure << 8).to_bytes(3, "big")
