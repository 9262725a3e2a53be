from __future__ import annotations

import numpy as np
import pytest

from fakes import SleepRecorder, no_sleep
from vironmetre.bridge.api import I2CBridge
from vironmetre.bridge.exceptions import CalibrationError, ProtocolError, ValidationError
from vironmetre.bridge.frames import FrameEncoding
from vironmetre.bridge.simulator import DATASHEET_CALIBRATION, SimulatedBridge
from vironmetre.sensors.bmp180 import (
    BMP180,
    PRESSURE_SETTLE_MS,
    REG_MD,
    REG_RESULT,
    TEMPERATURE_SETTLE_SEC,
    CalibrationWords,
    Coefficients,
)


def datasheet_words() -> CalibrationWords:
    return CalibrationWords(**{key.lower(): value for key, value in DATASHEET_CALIBRATION.items()})


@pytest.fixture(params=[FrameEncoding.TEXT, FrameEncoding.BINARY])
def device(request):
    transport = SimulatedBridge(request.param)
    transport.open()
    transport.reset_input()
    sleeper = SleepRecorder()
    bridge = I2CBridge(transport, request.param, sleep=no_sleep)
    return transport, BMP180(bridge, sleep=sleeper), sleeper


def test_driver_requires_bridge() -> None:
    with pytest.raises(ValidationError):
        BMP180(None)  # type: ignore[arg-type]


def test_coefficients_from_datasheet_words() -> None:
    coeff = Coefficients.from_words(datasheet_words())
    assert np.isclose(coeff.c5, 32757 / (32768 * 160))
    assert coeff.c6 == 23153.0
    assert np.isclose(coeff.mc, -696.88)
    assert np.isclose(coeff.md, 17.925)
    assert coeff.x0 == 408.0
    assert np.isclose(coeff.x1, -1.40625)
    assert np.isclose(coeff.y0, 32.741)
    assert np.isclose(coeff.p0, 2.364375)


def test_datasheet_temperature() -> None:
    coeff = Coefficients.from_words(datasheet_words())
    temperature = coeff.temperature(27898)
    # the datasheet integer algorithm reports 15.0 degC
    assert temperature == pytest.approx(15.0, abs=5e-3)
    assert temperature == pytest.approx(14.9971, abs=1e-3)


def test_datasheet_pressure() -> None:
    coeff = Coefficients.from_words(datasheet_words())
    temperature = coeff.temperature(27898)
    # 69964 Pa in the datasheet example
    assert coeff.pressure(23843.0, temperature) == pytest.approx(699.64, abs=0.05)


def test_acquire_calibration_reads_eleven_words(device) -> None:
    transport, driver, _ = device
    assert not driver.is_calibrated
    words = driver.acquire_calibration()
    assert words == datasheet_words()
    assert driver.is_calibrated
    assert driver.calibration == words
    # one register select + one read per word
    assert len(transport.writes) == 22


def test_calibration_is_all_or_nothing(device) -> None:
    transport, driver, _ = device
    driver.acquire_calibration()
    before_words = driver.calibration
    before_coeff = driver.coefficients
    transport.registers[0xAA:0xAC] = (1234).to_bytes(2, "big")
    transport.fail_register([REG_MD])
    with pytest.raises(ProtocolError):
        driver.acquire_calibration()
    assert driver.calibration is before_words
    assert driver.coefficients is before_coeff
    assert driver.coefficients == Coefficients.from_words(datasheet_words())


def test_failed_first_calibration_stays_uncalibrated(device) -> None:
    transport, driver, _ = device
    transport.fail_register([REG_MD])
    with pytest.raises(ProtocolError):
        driver.acquire_calibration()
    assert not driver.is_calibrated
    assert driver.coefficients is None


def test_readings_require_calibration(device) -> None:
    transport, driver, _ = device
    with pytest.raises(CalibrationError):
        driver.read_temperature()
    with pytest.raises(CalibrationError):
        driver.read_pressure(15.0)
    assert transport.writes == []


def test_read_temperature_and_pressure(device) -> None:
    transport, driver, sleeper = device
    driver.acquire_calibration()
    temperature = driver.read_temperature()
    pressure = driver.read_pressure(temperature, 0)
    assert temperature == pytest.approx(15.0, abs=5e-3)
    assert pressure == pytest.approx(699.64, abs=0.05)
    assert sleeper.calls == [TEMPERATURE_SETTLE_SEC, PRESSURE_SETTLE_MS[0] / 1000.0]


@pytest.mark.parametrize("oversampling", [1, 2, 3])
def test_pressure_oversampling_command_and_delay(device, oversampling: int) -> None:
    transport, driver, sleeper = device
    driver.acquire_calibration()
    temperature = driver.read_temperature()
    transport.writes.clear()
    pressure = driver.read_pressure(temperature, oversampling)
    assert pressure == pytest.approx(699.64, abs=0.05)
    assert sleeper.calls[-1] == PRESSURE_SETTLE_MS[oversampling] / 1000.0
    command = 0x34 + (oversampling << 6)
    if transport.encoding is FrameEncoding.TEXT:
        assert transport.writes[0] == f"WV,0011,0002F4{command:02X}.".encode("ascii")
    else:
        assert transport.writes[0] == bytes([0x57, 0x77, 0x02, 0xF4, command])


def test_settle_delays_grow_with_oversampling() -> None:
    assert list(PRESSURE_SETTLE_MS) == sorted(PRESSURE_SETTLE_MS)
    assert len(PRESSURE_SETTLE_MS) == 4


@pytest.mark.parametrize("oversampling", [4, 7, -1, 1.5, "1", True])
def test_pressure_rejects_oversampling_without_io(device, oversampling) -> None:
    transport, driver, _ = device
    driver.acquire_calibration()
    sent = len(transport.writes)
    with pytest.raises(ValidationError):
        driver.read_pressure(15.0, oversampling)
    assert len(transport.writes) == sent
    assert driver.is_calibrated


def test_read_failure_invalidates_calibration(device) -> None:
    transport, driver, _ = device
    driver.acquire_calibration()
    transport.fail_register([REG_RESULT])
    with pytest.raises(ProtocolError):
        driver.read_temperature()
    assert not driver.is_calibrated
    with pytest.raises(CalibrationError):
        driver.read_temperature()
