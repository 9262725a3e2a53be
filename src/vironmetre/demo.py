"""Demo run against the simulated bridge."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from .bridge.api import I2CBridge
from .bridge.frames import FrameEncoding
from .bridge.simulator import SimulatedBridge
from .runner import BarometerPoller, CancellationToken, ReadingLog, identify_device
from .sensors.bmp180 import BMP180


def run_demo(
    encoding: FrameEncoding | str = FrameEncoding.TEXT,
    *,
    count: int = 5,
    oversampling: int = 0,
    out_csv: Optional[Path] = None,
) -> ReadingLog:
    """Calibrate and poll the simulated datasheet BMP180 ``count`` times."""

    log = ReadingLog()
    with SimulatedBridge(encoding) as transport:
        bridge = I2CBridge(transport, encoding, sleep=lambda _sec: None)
        token = CancellationToken()
        address = identify_device(bridge, token, poll_sec=0.0)
        if address is None:
            raise RuntimeError("Simulated bridge reported no device")
        driver = BMP180(bridge, address, sleep=lambda _sec: None)
        poller = BarometerPoller(driver, oversampling=oversampling, interval_sec=0.0, max_readings=count)
        poller.register_callback(log.append)
        poller.run(token)

    if out_csv is not None:
        log.write_csv(out_csv)
    return log
