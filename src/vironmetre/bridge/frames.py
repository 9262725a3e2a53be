"""
Frame codecs for the serial I2C bridge.

Two wire encodings carry the same four logical operations:

Text (line oriented, CR/LF terminated):
    host -> bridge  WV,0011,00<LL><HH..>.   write LL bytes
    host -> bridge  WV,0011,01<LL>.         read LL bytes
    bridge -> host  SHW,0013,00<LL>         write acknowledgement
    bridge -> host  SHW,0013,01<LL><HH..>   read response
    bridge -> host  SHW,000E,<FF><AA>       device presence (FF=0 absent)

Binary (legacy, raw bytes):
    host -> bridge  [0x57][addr][len][payload]   write
    host -> bridge  [0x52][addr][len]            read
    bridge -> host  [tag][len][payload?]         echo + read payload
    host -> bridge  [0x49]                       presence query
    bridge -> host  [0x49][flag][addr?]          presence answer

Codecs do no I/O. Decoders never raise on malformed input, they return
``None`` (or ``(False, None)`` for presence) instead.
"""

from __future__ import annotations

import abc
import enum
import logging
from typing import Optional, Tuple

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_LENGTH = 0xFF
MAX_ADDRESS = 0x7F

DIRECTION_WRITE = 0x00
DIRECTION_READ = 0x01

TEXT_REQUEST_HEADER = "WV"
TEXT_RESPONSE_HEADER = "SHW"
TEXT_REQUEST_HANDLE = 0x0011
TEXT_RESPONSE_HANDLE = 0x0013
TEXT_PRESENCE_HANDLE = 0x000E
TEXT_TERMINATOR = "."

TAG_READ = 0x52  # 'R'
TAG_WRITE = 0x57  # 'W'
TAG_PRESENCE = 0x49  # 'I'
CLEAR_BUFFER_BYTE = 0x00
CLEAR_BUFFER_REPEAT = 3
CLEAR_BUFFER_ACK = "OK"


class FrameEncoding(str, enum.Enum):
    TEXT = "text"
    BINARY = "binary"


def _check_address(address: int) -> None:
    if not 0 <= address <= MAX_ADDRESS:
        raise ValidationError(f"I2C address must be 7-bit, got 0x{address:X}")


def _check_payload(payload: bytes) -> None:
    if len(payload) > MAX_LENGTH:
        raise ValidationError(f"Payload exceeds {MAX_LENGTH} bytes ({len(payload)})")


def _check_read_length(length: int) -> None:
    if not 1 <= length <= MAX_LENGTH:
        raise ValidationError(f"Read length must be between 1 and {MAX_LENGTH}, got {length}")


class FrameCodec(abc.ABC):
    """Translation between logical bridge operations and wire bytes."""

    encoding: FrameEncoding
    line_oriented: bool

    @abc.abstractmethod
    def encode_presence_query(self) -> bytes:
        ...

    @abc.abstractmethod
    def encode_write(self, address: int, payload: bytes) -> bytes:
        ...

    @abc.abstractmethod
    def encode_read(self, address: int, length: int) -> bytes:
        ...

    @abc.abstractmethod
    def decode_write_response(self, data: bytes) -> Optional[int]:
        """Return the echoed length, or ``None`` if the frame is not a write ack."""

    @abc.abstractmethod
    def decode_read_response(self, data: bytes, expected_length: int) -> Optional[bytes]:
        """Return exactly ``expected_length`` payload bytes, or ``None``."""

    @abc.abstractmethod
    def decode_presence(self, data: bytes) -> Tuple[bool, Optional[int]]:
        ...

    # Sizes of binary responses; line-oriented codecs read whole lines instead.
    def write_response_size(self) -> int:
        return 2

    def read_response_size(self, length: int) -> int:
        return 2 + length

    def presence_response_size(self) -> int:
        return 2


class TextCodec(FrameCodec):
    """ASCII hexadecimal encoding used by current bridge firmware."""

    encoding = FrameEncoding.TEXT
    line_oriented = True

    def encode_presence_query(self) -> bytes:
        # The bridge announces the device on its own
        return b""

    def encode_write(self, address: int, payload: bytes) -> bytes:
        _check_address(address)
        _check_payload(payload)
        return self._request(DIRECTION_WRITE, len(payload), bytes(payload))

    def encode_read(self, address: int, length: int) -> bytes:
        _check_address(address)
        _check_read_length(length)
        return self._request(DIRECTION_READ, length, b"")

    @staticmethod
    def _request(direction: int, length: int, payload: bytes) -> bytes:
        line = (
            f"{TEXT_REQUEST_HEADER},{TEXT_REQUEST_HANDLE:04X},"
            f"{direction:02X}{length:02X}{payload.hex().upper()}{TEXT_TERMINATOR}"
        )
        return line.encode("ascii")

    def decode_write_response(self, data: bytes) -> Optional[int]:
        body = self._response_body(data, TEXT_RESPONSE_HANDLE)
        if body is None:
            return None
        header = self._parse_hex(body, 2)
        if header is None:
            return None
        direction, length = header
        if direction != DIRECTION_WRITE:
            logger.debug("Write ack carries direction 0x%02X", direction)
            return None
        return length

    def decode_read_response(self, data: bytes, expected_length: int) -> Optional[bytes]:
        body = self._response_body(data, TEXT_RESPONSE_HANDLE)
        if body is None:
            return None
        header = self._parse_hex(body[:4], 2)
        if header is None:
            return None
        direction, length = header
        if direction != DIRECTION_READ:
            logger.debug("Read response carries direction 0x%02X", direction)
            return None
        if length != expected_length:
            logger.debug("Read response length %d, expected %d", length, expected_length)
            return None
        payload = self._parse_hex(body[4:], expected_length)
        if payload is None:
            return None
        return payload

    def decode_presence(self, data: bytes) -> Tuple[bool, Optional[int]]:
        body = self._response_body(data, TEXT_PRESENCE_HANDLE)
        if body is None:
            return False, None
        fields = self._parse_hex(body, 2)
        if fields is None:
            return False, None
        flag, address = fields
        if flag == 0:
            return False, None
        return True, address

    @staticmethod
    def _response_body(data: bytes, handle: int) -> Optional[str]:
        try:
            line = data.decode("ascii").strip("\r\n ")
        except UnicodeDecodeError:
            logger.debug("Discarding non-ASCII response %r", data)
            return None
        prefix = f"{TEXT_RESPONSE_HEADER},{handle:04X},"
        if not line.startswith(prefix):
            logger.debug("Unexpected response header: %r", line)
            return None
        return line[len(prefix):]

    @staticmethod
    def _parse_hex(text: str, count: int) -> Optional[bytes]:
        if len(text) != count * 2:
            logger.debug("Expected %d hex digits, got %r", count * 2, text)
            return None
        try:
            parsed = bytes.fromhex(text)
        except ValueError:
            logger.debug("Malformed hex group in %r", text)
            return None
        # fromhex skips whitespace, which would shift the groups
        if len(parsed) != count:
            logger.debug("Malformed hex group in %r", text)
            return None
        return parsed


class BinaryCodec(FrameCodec):
    """Legacy tagged-byte encoding."""

    encoding = FrameEncoding.BINARY
    line_oriented = False

    def encode_presence_query(self) -> bytes:
        return bytes([TAG_PRESENCE])

    def encode_write(self, address: int, payload: bytes) -> bytes:
        _check_address(address)
        _check_payload(payload)
        return bytes([TAG_WRITE, address, len(payload)]) + bytes(payload)

    def encode_read(self, address: int, length: int) -> bytes:
        _check_address(address)
        _check_read_length(length)
        return bytes([TAG_READ, address, length])

    def decode_write_response(self, data: bytes) -> Optional[int]:
        if len(data) != 2 or data[0] != TAG_WRITE:
            logger.debug("Unexpected write echo: %s", bytes(data).hex(" "))
            return None
        return data[1]

    def decode_read_response(self, data: bytes, expected_length: int) -> Optional[bytes]:
        if len(data) < 2 or data[0] != TAG_READ:
            logger.debug("Unexpected read echo: %s", bytes(data).hex(" "))
            return None
        if data[1] != expected_length:
            logger.debug("Read echo length %d, expected %d", data[1], expected_length)
            return None
        payload = bytes(data[2:])
        if len(payload) != expected_length:
            logger.debug("Read payload has %d bytes, expected %d", len(payload), expected_length)
            return None
        return payload

    def decode_presence(self, data: bytes) -> Tuple[bool, Optional[int]]:
        if len(data) < 2 or data[0] != TAG_PRESENCE:
            return False, None
        if data[1] == 0:
            return False, None
        address = data[2] if len(data) > 2 else None
        return True, address


def codec_for(encoding: FrameEncoding | str) -> FrameCodec:
    fmt = FrameEncoding(encoding)
    if fmt is FrameEncoding.BINARY:
        return BinaryCodec()
    return TextCodec()
