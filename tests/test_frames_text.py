from __future__ import annotations

import pytest

from vironmetre.bridge.exceptions import ValidationError
from vironmetre.bridge.frames import FrameEncoding, TextCodec, codec_for


def read_reply(length: int, payload: bytes, direction: str = "01") -> bytes:
    return f"SHW,0013,{direction}{length:02X}{payload.hex().upper()}".encode("ascii")


def test_encode_write_uppercase_hex() -> None:
    codec = TextCodec()
    assert codec.encode_write(0x77, b"\xf4\x2e") == b"WV,0011,0002F42E."
    assert codec.encode_write(0x77, b"") == b"WV,0011,0000."


def test_encode_read() -> None:
    codec = TextCodec()
    assert codec.encode_read(0x77, 2) == b"WV,0011,0102."
    assert codec.encode_read(0x77, 255) == b"WV,0011,01FF."


@pytest.mark.parametrize("length", [0, 256, -1])
def test_encode_read_rejects_length(length: int) -> None:
    with pytest.raises(ValidationError):
        TextCodec().encode_read(0x77, length)


def test_encode_rejects_oversized_payload_and_address() -> None:
    codec = TextCodec()
    with pytest.raises(ValidationError):
        codec.encode_write(0x77, bytes(256))
    with pytest.raises(ValidationError):
        codec.encode_write(0x80, b"\x00")


def test_read_round_trip_every_length() -> None:
    codec = codec_for(FrameEncoding.TEXT)
    for length in range(1, 256):
        payload = bytes((i * 37 + length) & 0xFF for i in range(length))
        request = codec.encode_read(0x77, length)
        assert request.startswith(f"WV,0011,01{length:02X}".encode("ascii"))
        assert codec.decode_read_response(read_reply(length, payload), length) == payload


def test_read_length_mismatch_never_partial() -> None:
    codec = TextCodec()
    payload = bytes(range(10))
    for echoed in (1, 9, 11, 255):
        reply = read_reply(echoed, bytes(range(echoed)))
        assert codec.decode_read_response(reply, 10) is None
    # declared length right, payload short
    assert codec.decode_read_response(b"SHW,0013,010A" + payload[:9].hex().encode(), 10) is None


@pytest.mark.parametrize(
    "reply",
    [
        b"SHX,0013,01020102",  # header
        b"SHW,0011,01020102",  # handle
        b"SHW,0013,00020102",  # direction
        b"SHW,0013,0102ZZ02",  # hex
        b"SHW,0013,0102 102",  # whitespace inside hex group
        b"SHW,0013,0102010203",  # trailing data
        b"\xff\xfe",
    ],
)
def test_read_response_failures(reply: bytes) -> None:
    assert TextCodec().decode_read_response(reply, 2) is None


def test_read_response_tolerates_line_ending() -> None:
    assert TextCodec().decode_read_response(b"SHW,0013,0102ABCD\r\n", 2) == b"\xab\xcd"


def test_decode_write_response() -> None:
    codec = TextCodec()
    assert codec.decode_write_response(b"SHW,0013,0002") == 2
    assert codec.decode_write_response(b"SHW,0013,0102") is None
    assert codec.decode_write_response(b"SHW,0013,00G2") is None
    assert codec.decode_write_response(b"WV,0013,0002") is None


@pytest.mark.parametrize("reply", [b"SHW,0013,0002ZZ", b"SHW,0013,0002F42E", b"SHW,0013,00"])
def test_write_response_rejects_extra_or_missing_groups(reply: bytes) -> None:
    assert TextCodec().decode_write_response(reply) is None


def test_decode_presence() -> None:
    codec = TextCodec()
    assert codec.decode_presence(b"SHW,000E,0177") == (True, 0x77)
    assert codec.decode_presence(b"SHW,000E,0077") == (False, None)
    assert codec.decode_presence(b"SHW,000E,01") == (False, None)
    assert codec.decode_presence(b"~~noise~~") == (False, None)


def test_text_codec_sends_no_presence_query() -> None:
    codec = TextCodec()
    assert codec.encode_presence_query() == b""
    assert codec.line_oriented
