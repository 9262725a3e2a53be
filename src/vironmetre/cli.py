"""Command line interface for the vironmetre package."""
from __future__ import annotations

import logging
import signal
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

import typer
from serial.tools import list_ports

from .bridge.api import I2CBridge
from .bridge.config import HostConfig, load_config
from .bridge.exceptions import UnknownDeviceError, VironmetreError
from .bridge.frames import FrameEncoding
from .bridge.transport import SerialTransport
from .demo import run_demo
from .runner import BarometerPoller, CancellationToken, ReadingLog, identify_device
from .sensors.bmp180 import BMP180

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Serial I2C bridge host utilities.")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_config(
    config_path: Optional[Path],
    override: Optional[List[str]],
    *,
    port: Optional[str] = None,
    baudrate: Optional[int] = None,
    timeout: Optional[float] = None,
    encoding: Optional[str] = None,
) -> HostConfig:
    overrides: List[str] = []
    if port is not None:
        overrides.append(f"serial.port={port}")
    if baudrate is not None:
        overrides.append(f"serial.baudrate={baudrate}")
    if timeout is not None:
        overrides.append(f"serial.timeout={timeout}")
    if encoding is not None:
        overrides.append(f"bridge.encoding={encoding}")
    try:
        cfg = load_config(config_path, (override or []) + overrides)
    except (ValueError, OSError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    return cfg


def _connect(cfg: HostConfig, transport: SerialTransport, token: CancellationToken) -> Optional[BMP180]:
    bridge = I2CBridge(
        transport,
        FrameEncoding(cfg.bridge.encoding_enum),
        clear_settle_sec=cfg.bridge.clear_settle_sec,
        presence_settle_sec=cfg.bridge.presence_settle_sec,
    )
    typer.echo("Awaiting I2C device connection...")
    address = identify_device(bridge, token, poll_sec=cfg.bridge.presence_poll_sec)
    if address is None:
        return None
    if address != cfg.sensor.address:
        raise UnknownDeviceError(address)
    typer.echo(f"BMP180 found at 0x{address:02X}")
    return BMP180(bridge, address)


@app.command()
def ports() -> None:
    """List serial ports available on this host."""

    found = sorted(list_ports.comports(), key=lambda info: info.device)
    if not found:
        typer.echo("No serial ports available")
        raise typer.Exit(code=1)
    for info in found:
        typer.echo(f"{info.device}\t{info.description}")


@app.command()
def run(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial device (default from config)."),
    baudrate: Optional[int] = typer.Option(None, "--baud", help="Serial baudrate."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Serial read timeout (seconds)."),
    encoding: Optional[str] = typer.Option(None, "--encoding", "-e", help="Bridge encoding: text|binary."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to host config JSON."),
    override: Optional[List[str]] = typer.Option(
        None, "--set", help="Override config keys, e.g. --set sensor.oversampling=3"
    ),
    oversampling: Optional[int] = typer.Option(None, "--oversampling", "-o", min=0, max=3, help="Pressure oversampling 0..3."),
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between readings."),
    count: Optional[int] = typer.Option(None, "--count", "-n", min=1, help="Stop after N readings."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write readings to this CSV file."),
    clear: bool = typer.Option(False, "--clear/--no-clear", help="Resynchronise the bridge buffer first."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log frames at DEBUG level."),
) -> None:
    """Poll temperature and pressure until Ctrl+C (or --count readings)."""

    _setup_logging(verbose)
    cfg = _build_config(config_path, override, port=port, baudrate=baudrate, timeout=timeout, encoding=encoding)
    oss = cfg.sensor.oversampling if oversampling is None else oversampling
    interval_sec = cfg.sensor.interval_sec if interval is None else interval
    out_csv = out or cfg.output_csv

    token = CancellationToken()
    previous = signal.signal(signal.SIGINT, lambda _sig, _frame: token.cancel())
    log = ReadingLog()
    try:
        with SerialTransport(cfg.serial) as transport:
            driver = _connect(cfg, transport, token)
            if driver is None:
                typer.echo("Stopped before a device was detected")
                return
            if clear and not driver.bridge.clear_buffer():
                typer.echo("[warning] bridge did not acknowledge buffer clear")
            poller = BarometerPoller(
                driver,
                oversampling=oss,
                interval_sec=interval_sec,
                max_readings=count,
                on_reading=log.append,
            )
            poller.run(token)
            logger.info("Bridge stats: %s", driver.bridge.stats())
    except UnknownDeviceError as exc:
        typer.echo(f"Unknown device (0x{exc.address:02X})")
        raise typer.Exit(code=1) from exc
    except VironmetreError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        signal.signal(signal.SIGINT, previous)
        if out_csv is not None and len(log):
            log.write_csv(out_csv)
            typer.echo(f"Wrote {len(log)} readings to {out_csv}")


@app.command()
def calibration(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial device (default from config)."),
    baudrate: Optional[int] = typer.Option(None, "--baud", help="Serial baudrate."),
    encoding: Optional[str] = typer.Option(None, "--encoding", "-e", help="Bridge encoding: text|binary."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to host config JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log frames at DEBUG level."),
) -> None:
    """Read and print the eleven BMP180 calibration words."""

    _setup_logging(verbose)
    cfg = _build_config(config_path, None, port=port, baudrate=baudrate, encoding=encoding)
    token = CancellationToken()
    try:
        with SerialTransport(cfg.serial) as transport:
            driver = _connect(cfg, transport, token)
            if driver is None:
                raise typer.Exit(code=1)
            words = driver.acquire_calibration()
    except UnknownDeviceError as exc:
        typer.echo(f"Unknown device (0x{exc.address:02X})")
        raise typer.Exit(code=1) from exc
    except VironmetreError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc
    for name, value in asdict(words).items():
        typer.echo(f"{name.upper():<4}= {value}")


@app.command()
def demo(
    encoding: str = typer.Option("text", "--encoding", "-e", help="Simulated bridge encoding: text|binary."),
    count: int = typer.Option(5, "--count", "-n", min=1, help="Number of readings."),
    oversampling: int = typer.Option(0, "--oversampling", "-o", min=0, max=3, help="Pressure oversampling 0..3."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write readings to this CSV file."),
) -> None:
    """Poll a simulated bridge with the datasheet example BMP180."""

    try:
        fmt = FrameEncoding(encoding.lower())
    except ValueError as exc:
        raise typer.BadParameter("--encoding must be text or binary", param_hint="--encoding") from exc
    log = run_demo(fmt, count=count, oversampling=oversampling, out_csv=out)
    frame = log.to_frame()
    for row in frame.itertuples(index=False):
        typer.echo(f"T = {row.temperature_c:.3f} degC  P = {row.pressure_mbar:.3f} mbar")
    if out is not None:
        typer.echo(f"Readings written to {out}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
