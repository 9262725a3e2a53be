from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, List, Optional

import pandas as pd

from .bridge.api import I2CBridge
from .bridge.exceptions import TransportError, VironmetreError
from .sensors.bmp180 import BMP180, check_oversampling

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative stop flag, checked between bridge transactions."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)


@dataclass
class Reading:
    ts: float
    temperature_c: float
    pressure_mbar: float
    oversampling: int


class ReadingLog:
    """Collects readings and exports them as a DataFrame / CSV."""

    columns = ["ts", "temperature_c", "pressure_mbar", "oversampling"]

    def __init__(self) -> None:
        self.readings: List[Reading] = []

    def append(self, reading: Reading) -> None:
        self.readings.append(reading)

    def __len__(self) -> int:
        return len(self.readings)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(reading) for reading in self.readings], columns=self.columns)

    def write_csv(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().to_csv(path, index=False)
        return path


def identify_device(bridge: I2CBridge, token: CancellationToken, *, poll_sec: float = 0.5) -> Optional[int]:
    """Block until the bridge reports a device address or the token is cancelled."""
    while not token.cancelled:
        try:
            address = bridge.detect_device_presence()
        except TransportError as exc:
            logger.debug("Presence detection: %s", exc)
            address = None
        if address is not None:
            return address
        if token.wait(poll_sec):
            break
    return None


class BarometerPoller:
    """
    Calibrate, then alternate temperature and pressure readings until
    cancelled. A failed reading sends the loop back to calibration, and a
    failed calibration clears the bridge buffer before the next attempt.
    """

    def __init__(
        self,
        driver: BMP180,
        *,
        oversampling: int = 0,
        interval_sec: float = 1.0,
        max_readings: Optional[int] = None,
        on_reading: Optional[Callable[[Reading], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        check_oversampling(oversampling)
        self.driver = driver
        self.oversampling = oversampling
        self.interval_sec = interval_sec
        self.max_readings = max_readings
        self._callbacks: List[Callable[[Reading], None]] = []
        if on_reading is not None:
            self._callbacks.append(on_reading)
        self._clock = clock
        self.calibration_attempts = 0
        self.failed_readings = 0

    def register_callback(self, callback: Callable[[Reading], None]) -> None:
        self._callbacks.append(callback)

    def run(self, token: CancellationToken) -> List[Reading]:
        readings: List[Reading] = []
        while not token.cancelled and not self._done(readings):
            if not self.driver.is_calibrated:
                if not self._calibrate():
                    token.wait(self.interval_sec)
                    continue
            reading = self._read_once()
            if reading is None:
                continue
            readings.append(reading)
            for callback in self._callbacks:
                callback(reading)
            if self._done(readings):
                break
            token.wait(self.interval_sec)
        logger.info(
            "Poller stopped: readings=%d calibration_attempts=%d failed_readings=%d",
            len(readings),
            self.calibration_attempts,
            self.failed_readings,
        )
        return readings

    def _done(self, readings: List[Reading]) -> bool:
        return self.max_readings is not None and len(readings) >= self.max_readings

    def _calibrate(self) -> bool:
        self.calibration_attempts += 1
        logger.info("Getting calibration values (attempt %d)", self.calibration_attempts)
        try:
            self.driver.acquire_calibration()
        except VironmetreError as exc:
            logger.warning("Calibration failed: %s", exc)
            self._resync()
            return False
        return True

    def _resync(self) -> None:
        try:
            acknowledged = self.driver.bridge.clear_buffer()
        except VironmetreError as exc:
            logger.warning("Buffer clear failed: %s", exc)
            return
        if not acknowledged:
            logger.warning("Bridge did not acknowledge buffer clear")

    def _read_once(self) -> Optional[Reading]:
        try:
            temperature = self.driver.read_temperature()
            pressure = self.driver.read_pressure(temperature, self.oversampling)
        except VironmetreError as exc:
            self.failed_readings += 1
            logger.warning("Reading failed: %s", exc)
            return None
        logger.info("Temperature = %.3f degC, pressure = %.3f mbar", temperature, pressure)
        return Reading(
            ts=self._clock(),
            temperature_c=temperature,
            pressure_mbar=pressure,
            oversampling=self.oversampling,
        )
