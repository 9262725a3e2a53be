from __future__ import annotations

import re
from pathlib import Path

import pandas as pd
import pytest
from typer.testing import CliRunner

from vironmetre import cli
from vironmetre.bridge.simulator import SimulatedBridge
from vironmetre.cli import app

runner = CliRunner()


@pytest.fixture
def simulated_port(monkeypatch):
    """Route the serial transport to a simulated bridge; returns the opened instances."""
    opened = []

    def install(device_address=0x77):
        def factory(settings):
            transport = SimulatedBridge("text", device_address=device_address)
            opened.append(transport)
            return transport

        monkeypatch.setattr(cli, "SerialTransport", factory)
        return opened

    return install


def test_demo_text(tmp_path: Path) -> None:
    out = tmp_path / "demo.csv"
    result = runner.invoke(app, ["demo", "--count", "2", "--out", str(out)])
    assert result.exit_code == 0, result.output
    assert result.output.count("T = 14.99") == 2
    assert "P = 699.6" in result.output
    assert len(pd.read_csv(out)) == 2


def test_demo_binary_oversampling() -> None:
    result = runner.invoke(app, ["demo", "--encoding", "binary", "--count", "1", "--oversampling", "3"])
    assert result.exit_code == 0, result.output
    assert "P = 699.6" in result.output


def test_demo_rejects_unknown_encoding() -> None:
    result = runner.invoke(app, ["demo", "--encoding", "morse"])
    assert result.exit_code != 0


def test_run_rejects_bad_override() -> None:
    result = runner.invoke(app, ["run", "--set", "sensor.oversampling=9"])
    assert result.exit_code != 0


def test_run_writes_csv(simulated_port, tmp_path: Path) -> None:
    opened = simulated_port()
    out = tmp_path / "readings.csv"
    result = runner.invoke(app, ["run", "--count", "2", "--interval", "0", "--out", str(out)])
    assert result.exit_code == 0, result.output
    assert "BMP180 found at 0x77" in result.output
    frame = pd.read_csv(out)
    assert len(frame) == 2
    assert frame["pressure_mbar"].iloc[0] == pytest.approx(699.64, abs=0.05)
    assert len(opened) == 1 and not opened[0].is_open


def test_calibration_prints_words(simulated_port) -> None:
    simulated_port()
    result = runner.invoke(app, ["calibration"])
    assert result.exit_code == 0, result.output
    lines = [line for line in result.output.splitlines() if re.fullmatch(r"[A-Z0-9]+ *= -?\d+", line)]
    assert len(lines) == 11
    assert "AC1 = 408" in result.output
    assert "MC  = -8711" in result.output


@pytest.mark.parametrize("command", [["run", "--count", "1"], ["calibration"]])
def test_unknown_device_exits_with_error(simulated_port, command) -> None:
    simulated_port(device_address=0x76)
    result = runner.invoke(app, command)
    assert result.exit_code == 1
    assert "Unknown device (0x76)" in result.output


def test_run_reports_unusable_config(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text('{"serial": {"timeout": null}}', encoding="utf-8")
    result = runner.invoke(app, ["run", "--config", str(cfg_path)])
    assert result.exit_code == 2
    assert not isinstance(result.exception, TypeError)
