"""
Remote I2C operations over the serial bridge.

Each call is one blocking write-then-read round trip on the transport. The
bridge holds no lock and never retries: only the caller knows whether a
failed transaction is safe to repeat. A mismatched reply discards pending
input before the ``ProtocolError`` is raised.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional

from .exceptions import ProtocolError, TransportError, ValidationError
from .frames import (
    CLEAR_BUFFER_ACK,
    CLEAR_BUFFER_BYTE,
    CLEAR_BUFFER_REPEAT,
    MAX_LENGTH,
    FrameCodec,
    FrameEncoding,
    codec_for,
)
from .transport import Transport

logger = logging.getLogger(__name__)

# Time the bridge needs to drain its receiver after the reset pattern
CLEAR_SETTLE_SEC = 0.1
# Time the bridge needs to answer a binary presence query
PRESENCE_SETTLE_SEC = 0.1


class I2CBridge:
    """Request/response API to the single I2C device behind the bridge."""

    def __init__(
        self,
        transport: Transport,
        encoding: FrameEncoding | str = FrameEncoding.TEXT,
        *,
        clear_settle_sec: float = CLEAR_SETTLE_SEC,
        presence_settle_sec: float = PRESENCE_SETTLE_SEC,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if transport is None:
            raise ValidationError("I2CBridge requires a transport")
        self.transport = transport
        self.codec: FrameCodec = codec_for(encoding)
        self._clear_settle_sec = clear_settle_sec
        self._presence_settle_sec = presence_settle_sec
        self._sleep = sleep
        self._stats: Dict[str, int] = {"round_trips": 0, "protocol_errors": 0, "transport_errors": 0}

    @property
    def encoding(self) -> FrameEncoding:
        return self.codec.encoding

    def detect_device_presence(self) -> Optional[int]:
        """
        Wait for the bridge to report an attached device.

        Returns the device address, or ``None`` when the bridge reports no
        device or the answer cannot be decoded (line noise on first connect).
        """
        query = self.codec.encode_presence_query()
        if query:
            self._send(query)
            self._sleep(self._presence_settle_sec)
        data = self._receive(self.codec.presence_response_size())
        present, address = self.codec.decode_presence(data)
        if not present:
            logger.debug("No device reported (%r)", data)
            return None
        if address is None:
            address = self._guard(self.transport.read_byte)
        logger.info("Bridge reports device at 0x%02X", address)
        return address

    def clear_buffer(self) -> bool:
        """
        Resynchronise the bridge receiver.

        Pending input is discarded first, so nothing received before the
        clear is visible to later reads. Returns ``False`` when the bridge
        does not acknowledge; the caller may retry.
        """
        self._guard(self.transport.reset_input)
        for _ in range(CLEAR_BUFFER_REPEAT):
            self._guard(self.transport.write_byte, CLEAR_BUFFER_BYTE)
        self._sleep(self._clear_settle_sec)
        try:
            reply = self._guard(self.transport.read_existing)
        except TransportError as exc:
            logger.warning("Buffer clear: no acknowledgement (%s)", exc)
            return False
        ack = reply.decode("ascii", errors="replace").strip("\r\n")
        if ack != CLEAR_BUFFER_ACK:
            logger.warning("Buffer clear: unexpected reply %r", reply)
            return False
        return True

    def read_bytes(self, address: int, buffer: bytearray, length: int = 0) -> None:
        """Read ``length`` bytes (all of ``buffer`` when 0) from the device into ``buffer``."""
        length = self._resolve_length(buffer, length)
        request = self.codec.encode_read(address, length)
        self._send(request)
        data = self._receive(self.codec.read_response_size(length))
        payload = self.codec.decode_read_response(data, length)
        if payload is None:
            self._protocol_failure()
            raise ProtocolError(f"Invalid read response from 0x{address:02X}: {data!r}", expected=length)
        buffer[:length] = payload

    def write_bytes(self, address: int, data: bytes, length: int = 0) -> None:
        """Write ``length`` bytes (all of ``data`` when 0) to the device."""
        length = self._resolve_length(data, length)
        request = self.codec.encode_write(address, bytes(data[:length]))
        self._send(request)
        reply = self._receive(self.codec.write_response_size())
        echoed = self.codec.decode_write_response(reply)
        if echoed is None:
            self._protocol_failure()
            raise ProtocolError(f"Invalid write acknowledgement from 0x{address:02X}: {reply!r}", expected=length)
        if echoed != length:
            self._protocol_failure()
            raise ProtocolError(
                f"Write acknowledged {echoed} bytes, expected {length}", expected=length, received=echoed
            )

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    @staticmethod
    def _resolve_length(buffer: bytes | bytearray, length: int) -> int:
        if length == 0:
            length = len(buffer)
        if length < 0 or length > len(buffer):
            raise ValidationError(f"Length {length} does not fit a {len(buffer)}-byte buffer")
        if length > MAX_LENGTH:
            raise ValidationError(f"Length {length} exceeds {MAX_LENGTH} bytes")
        return length

    def _send(self, frame: bytes) -> None:
        self._stats["round_trips"] += 1
        if self.codec.line_oriented:
            self._guard(self.transport.write_line, frame)
        else:
            self._guard(self.transport.write, frame)

    def _receive(self, size: int) -> bytes:
        if self.codec.line_oriented:
            return self._guard(self.transport.read_line)
        return self._guard(self.transport.read_exact, size)

    def _protocol_failure(self) -> None:
        # Anything still queued belongs to an earlier transaction
        self._stats["protocol_errors"] += 1
        self._guard(self.transport.reset_input)

    def _guard(self, func, *args):
        try:
            return func(*args)
        except TransportError:
            self._stats["transport_errors"] += 1
            raise
