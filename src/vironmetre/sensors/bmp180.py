"""
Bosch BMP180 barometric pressure / temperature sensor behind the I2C bridge.

Compensation uses the floating-point polynomial form of the datasheet
algorithm: eleven factory words are turned once into thirteen coefficients,
then each reading is a couple of quadratic evaluations.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional

import numpy as np

from ..bridge.api import I2CBridge
from ..bridge.exceptions import CalibrationError, ValidationError, VironmetreError

logger = logging.getLogger(__name__)

BMP180_ADDRESS = 0x77

REG_CONTROL = 0xF4
REG_RESULT = 0xF6

REG_AC1 = 0xAA
REG_AC2 = 0xAC
REG_AC3 = 0xAE
REG_AC4 = 0xB0
REG_AC5 = 0xB2
REG_AC6 = 0xB4
REG_B1 = 0xB6
REG_B2 = 0xB8
REG_MB = 0xBA
REG_MC = 0xBC
REG_MD = 0xBE

COMMAND_TEMPERATURE = 0x2E
COMMAND_PRESSURE = 0x34

MAX_OVERSAMPLING = 3

# Conversion times rounded up from the datasheet maxima (4.5, 7.5, 13.5, 25.5 ms)
TEMPERATURE_SETTLE_SEC = 0.005
PRESSURE_SETTLE_MS = (5, 8, 14, 26)

# (field, register, signed)
CALIBRATION_REGISTERS = (
    ("ac1", REG_AC1, True),
    ("ac2", REG_AC2, True),
    ("ac3", REG_AC3, True),
    ("ac4", REG_AC4, False),
    ("ac5", REG_AC5, False),
    ("ac6", REG_AC6, False),
    ("b1", REG_B1, True),
    ("b2", REG_B2, True),
    ("mb", REG_MB, True),
    ("mc", REG_MC, True),
    ("md", REG_MD, True),
)


def check_oversampling(oversampling: int) -> int:
    if isinstance(oversampling, bool) or not isinstance(oversampling, int):
        raise ValidationError(f"Oversampling must be an integer, got {oversampling!r}")
    if not 0 <= oversampling <= MAX_OVERSAMPLING:
        raise ValidationError(f"Oversampling must be between 0 and {MAX_OVERSAMPLING}, got {oversampling}")
    return oversampling


@dataclass(frozen=True)
class CalibrationWords:
    """Factory constants as stored in the sensor EEPROM."""

    ac1: int
    ac2: int
    ac3: int
    ac4: int
    ac5: int
    ac6: int
    b1: int
    b2: int
    mb: int
    mc: int
    md: int


@dataclass(frozen=True)
class Coefficients:
    c5: float
    c6: float
    mc: float
    md: float
    x0: float
    x1: float
    x2: float
    y0: float
    y1: float
    y2: float
    p0: float
    p1: float
    p2: float

    @staticmethod
    def from_words(words: CalibrationWords) -> "Coefficients":
        c3 = 160.0 * 2.0**-15 * words.ac3
        c4 = 1e-3 * 2.0**-15 * words.ac4
        b1 = 160.0**2 * 2.0**-30 * words.b1
        return Coefficients(
            c5=(2.0**-15 / 160.0) * words.ac5,
            c6=float(words.ac6),
            mc=(2.0**11 / 160.0**2) * words.mc,
            md=words.md / 160.0,
            x0=float(words.ac1),
            x1=160.0 * 2.0**-13 * words.ac2,
            x2=160.0**2 * 2.0**-25 * words.b2,
            y0=c4 * 2.0**15,
            y1=c4 * c3,
            y2=c4 * b1,
            p0=(3791.0 - 8.0) / 1600.0,
            p1=1.0 - 7357.0 * 2.0**-20,
            p2=3038.0 * 100.0 * 2.0**-36,
        )

    def temperature(self, tu: float) -> float:
        """Degrees Celsius from the raw temperature count."""
        a = self.c5 * (tu - self.c6)
        return a + self.mc / (a + self.md)

    def pressure(self, pu: float, temperature: float) -> float:
        """Millibar from the raw pressure count and the matching temperature."""
        s = temperature - 25.0
        x = np.polyval([self.x2, self.x1, self.x0], s)
        y = np.polyval([self.y2, self.y1, self.y0], s)
        z = (pu - x) / y
        return float(np.polyval([self.p2, self.p1, self.p0], z))


class BMP180:
    """
    Driver state machine: uncalibrated until ``acquire_calibration`` succeeds,
    calibrated afterwards, and back to uncalibrated whenever a reading fails.
    """

    def __init__(
        self,
        bridge: I2CBridge,
        address: int = BMP180_ADDRESS,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if bridge is None:
            raise ValidationError("BMP180 requires an I2C bridge")
        self.bridge = bridge
        self.address = address
        self._sleep = sleep
        self._calibration: Optional[CalibrationWords] = None
        self._coefficients: Optional[Coefficients] = None

    @property
    def is_calibrated(self) -> bool:
        return self._coefficients is not None

    @property
    def calibration(self) -> Optional[CalibrationWords]:
        return self._calibration

    @property
    def coefficients(self) -> Optional[Coefficients]:
        return self._coefficients

    def acquire_calibration(self) -> CalibrationWords:
        """
        Read all eleven calibration words and derive the coefficients.

        Either every word is read and the new set replaces the old one, or
        the error propagates and the previous state is left untouched.
        """
        values = {}
        for name, register, signed in CALIBRATION_REGISTERS:
            values[name] = self._read_word(register, signed)
        words = CalibrationWords(**values)
        coefficients = Coefficients.from_words(words)
        self._calibration, self._coefficients = words, coefficients
        logger.info(
            "Calibration: %s",
            " ".join(f"{key.upper()}={value}" for key, value in asdict(words).items()),
        )
        return words

    def invalidate(self) -> None:
        self._calibration = None
        self._coefficients = None

    def read_temperature(self) -> float:
        coefficients = self._require_coefficients()
        try:
            self.bridge.write_bytes(self.address, bytes([REG_CONTROL, COMMAND_TEMPERATURE]))
            self._sleep(TEMPERATURE_SETTLE_SEC)
            data = self._read_result(2)
        except VironmetreError:
            self._drop_calibration()
            raise
        tu = data[0] * 256.0 + data[1]
        temperature = coefficients.temperature(tu)
        logger.debug("tu=%.0f T=%.3f", tu, temperature)
        return temperature

    def read_pressure(self, temperature: float, oversampling: int = 0) -> float:
        """
        Pressure in millibar for the given oversampling level (0..3).

        ``temperature`` must come from ``read_temperature`` in the same
        measurement cycle; a stale value gives a wrong but plausible result.
        """
        check_oversampling(oversampling)
        coefficients = self._require_coefficients()
        command = COMMAND_PRESSURE + (oversampling << 6)
        try:
            self.bridge.write_bytes(self.address, bytes([REG_CONTROL, command]))
            self._sleep(PRESSURE_SETTLE_MS[oversampling] / 1000.0)
            data = self._read_result(3)
        except VironmetreError:
            self._drop_calibration()
            raise
        pu = data[0] * 256.0 + data[1] + data[2] / 256.0
        pressure = coefficients.pressure(pu, temperature)
        logger.debug("pu=%.3f oss=%d P=%.3f", pu, oversampling, pressure)
        return pressure

    def _require_coefficients(self) -> Coefficients:
        if self._coefficients is None:
            raise CalibrationError("BMP180 is not calibrated; call acquire_calibration() first")
        return self._coefficients

    def _drop_calibration(self) -> None:
        logger.warning("Reading failed, calibration invalidated")
        self.invalidate()

    def _read_result(self, length: int) -> bytearray:
        self.bridge.write_bytes(self.address, bytes([REG_RESULT]))
        data = bytearray(length)
        self.bridge.read_bytes(self.address, data)
        return data

    def _read_word(self, register: int, signed: bool) -> int:
        self.bridge.write_bytes(self.address, bytes([register]))
        data = bytearray(2)
        self.bridge.read_bytes(self.address, data)
        return int.from_bytes(data, "big", signed=signed)
