from __future__ import annotations

import math
from pathlib import Path

import pytest

from vironmetre.bridge.config import HostConfig, SerialSettings, load_config
from vironmetre.bridge.exceptions import ValidationError

REPO_CONFIG = Path(__file__).resolve().parents[1] / "host" / "config.json"


def test_load_config_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(
        """
        {
          "serial": {"port": "COM3", "baudrate": 9600},
          "bridge": {"encoding": "text"},
          "sensor": {"address": "0x77", "oversampling": 0}
        }
        """,
        encoding="utf-8",
    )
    cfg = load_config(cfg_path, overrides=["bridge.encoding=binary", "sensor.oversampling=3", "serial.timeout=0.5"])
    assert isinstance(cfg, HostConfig)
    assert cfg.serial.port == "COM3"
    assert cfg.serial.timeout == 0.5
    assert cfg.bridge.encoding_enum == "binary"
    assert cfg.sensor.oversampling == 3
    assert cfg.sensor.address == 0x77


def test_defaults_without_file() -> None:
    cfg = load_config()
    assert cfg.serial.baudrate == 9600
    assert cfg.bridge.encoding == "text"
    assert cfg.output_csv is None


def test_repo_config_loads() -> None:
    cfg = load_config(REPO_CONFIG)
    assert cfg.sensor.address == 0x77
    assert math.isfinite(cfg.serial.timeout)


def test_hex_override() -> None:
    cfg = load_config(None, ["sensor.address=0x76"])
    assert cfg.sensor.address == 0x76


@pytest.mark.parametrize("timeout", [0.0, -1.0, float("inf"), None])
def test_timeouts_must_be_finite(timeout) -> None:
    with pytest.raises(ValidationError):
        SerialSettings(port="COM1", timeout=timeout)


@pytest.mark.parametrize(
    "override",
    ["bridge.encoding=morse", "sensor.oversampling=4", "no_equals_sign", "=1"],
)
def test_invalid_overrides(override: str) -> None:
    with pytest.raises(ValidationError):
        load_config(None, [override])


def test_null_timeout_in_file_is_validation_error(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text('{"serial": {"timeout": null}}', encoding="utf-8")
    with pytest.raises(ValidationError, match="serial.timeout"):
        load_config(cfg_path)


@pytest.mark.parametrize(
    "override",
    ["serial.baudrate=fast", "sensor.address=0x80", "sensor.address=null", "display.port=COM1", "serial.port.name=x"],
)
def test_unusable_values_and_keys(override: str) -> None:
    with pytest.raises(ValidationError):
        load_config(None, [override])


def test_override_merges_into_file_section(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text('{"serial": {"port": "COM3", "timeout": 1.5}}', encoding="utf-8")
    cfg = load_config(cfg_path, ["serial.port=COM4", "output_csv=out/readings.csv"])
    assert cfg.serial.port == "COM4"
    assert cfg.serial.timeout == 1.5
    assert cfg.output_csv == Path("out/readings.csv")
