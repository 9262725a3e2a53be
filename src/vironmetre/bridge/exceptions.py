"""
Exceptions raised by the bridge and the drivers built on top of it.
"""

from __future__ import annotations


class VironmetreError(Exception):
    """Base exception for bridge and sensor errors."""
    pass


class TransportError(VironmetreError):
    """Serial channel failure: I/O error, timeout or closed port."""
    pass


class ProtocolError(VironmetreError):
    """Response frame did not match the request (header, direction or length)."""

    def __init__(self, message: str, expected: int | None = None, received: int | None = None):
        self.expected = expected
        self.received = received
        super().__init__(message)


class ValidationError(VironmetreError, ValueError):
    """Invalid argument, rejected before any I/O."""
    pass


class CalibrationError(VironmetreError):
    """Sensor reading requested without a valid calibration set."""
    pass


class UnknownDeviceError(VironmetreError):
    """Bridge reported a device this host has no driver for."""

    def __init__(self, address: int):
        self.address = address
        super().__init__(f"Unknown device at address 0x{address:02X}")
