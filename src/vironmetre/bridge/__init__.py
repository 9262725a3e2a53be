"""
Serial I2C bridge: configuration, transport, frame codecs and the request API.

Both wire encodings (ASCII hex text and the legacy binary tags) sit behind
``FrameCodec``, so ``I2CBridge`` and the sensor drivers are written once.
"""

from .api import I2CBridge
from .config import BridgeSettings, HostConfig, SensorSettings, SerialSettings, load_config
from .exceptions import (
    CalibrationError,
    ProtocolError,
    TransportError,
    UnknownDeviceError,
    ValidationError,
    VironmetreError,
)
from .frames import BinaryCodec, FrameCodec, FrameEncoding, TextCodec, codec_for
from .simulator import SimulatedBridge
from .transport import SerialTransport, Transport

__all__ = [
    "I2CBridge",
    "BridgeSettings",
    "HostConfig",
    "SensorSettings",
    "SerialSettings",
    "load_config",
    "CalibrationError",
    "ProtocolError",
    "TransportError",
    "UnknownDeviceError",
    "ValidationError",
    "VironmetreError",
    "BinaryCodec",
    "FrameCodec",
    "FrameEncoding",
    "TextCodec",
    "codec_for",
    "SimulatedBridge",
    "SerialTransport",
    "Transport",
]
