from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

from .exceptions import ValidationError


@dataclass
class SerialSettings:
    port: str = "/dev/ttyUSB0"
    baudrate: int = 9600
    timeout: float = 2.0
    write_timeout: float = 2.0

    def __post_init__(self) -> None:
        for name in ("timeout", "write_timeout"):
            value = getattr(self, name)
            if value is None or not math.isfinite(float(value)) or float(value) <= 0:
                raise ValidationError(f"serial.{name} must be a finite positive number, got {value!r}")


@dataclass
class BridgeSettings:
    encoding: str = "text"  # text | binary
    clear_settle_sec: float = 0.1
    presence_settle_sec: float = 0.1
    presence_poll_sec: float = 0.5

    def __post_init__(self) -> None:
        if self.encoding.lower() not in {"text", "binary"}:
            raise ValidationError(f"Unsupported bridge encoding '{self.encoding}'")

    @property
    def encoding_enum(self) -> str:
        return self.encoding.lower()


@dataclass
class SensorSettings:
    address: int = 0x77
    oversampling: int = 0
    interval_sec: float = 1.0

    def __post_init__(self) -> None:
        if not 0 <= self.oversampling <= 3:
            raise ValidationError(f"sensor.oversampling must be between 0 and 3, got {self.oversampling}")


@dataclass
class HostConfig:
    serial: SerialSettings = field(default_factory=SerialSettings)
    bridge: BridgeSettings = field(default_factory=BridgeSettings)
    sensor: SensorSettings = field(default_factory=SensorSettings)
    output_csv: Path | None = None


SECTIONS = ("serial", "bridge", "sensor")


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValidationError(f"{path}: top level must be a JSON object")
    return data


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    # Section tables merge key by key; scalars (and a null section) are replaced
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        merged[key] = {**current, **value} if isinstance(current, dict) and isinstance(value, dict) else value
    return merged


def load_config(path: Optional[Path | str] = None, overrides: Sequence[str] | None = None) -> HostConfig:
    """
    Load the host configuration from JSON and apply CLI-style overrides.

    Overrides are dotted `key=value` pairs, e.g.:
        ["sensor.oversampling=3", "bridge.encoding=binary"]
    Passing no path starts from the built-in defaults. Values that cannot be
    converted raise ``ValidationError``.
    """
    data = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, value = _parse_override(override)
        _assign_nested(override_data, key, value)
    merged = _merge(data, override_data)
    serial_data = _section(merged, "serial")
    bridge_data = _section(merged, "bridge")
    sensor_data = _section(merged, "sensor")
    return HostConfig(
        serial=SerialSettings(
            port=_field(serial_data, "serial.port", "/dev/ttyUSB0", str),
            baudrate=_field(serial_data, "serial.baudrate", 9600, int),
            timeout=_field(serial_data, "serial.timeout", 2.0, float),
            write_timeout=_field(serial_data, "serial.write_timeout", 2.0, float),
        ),
        bridge=BridgeSettings(
            encoding=_field(bridge_data, "bridge.encoding", "text", str),
            clear_settle_sec=_field(bridge_data, "bridge.clear_settle_sec", 0.1, float),
            presence_settle_sec=_field(bridge_data, "bridge.presence_settle_sec", 0.1, float),
            presence_poll_sec=_field(bridge_data, "bridge.presence_poll_sec", 0.5, float),
        ),
        sensor=SensorSettings(
            address=_field(sensor_data, "sensor.address", 0x77, _coerce_address),
            oversampling=_field(sensor_data, "sensor.oversampling", 0, int),
            interval_sec=_field(sensor_data, "sensor.interval_sec", 1.0, float),
        ),
        output_csv=Path(merged["output_csv"]) if merged.get("output_csv") else None,
    )


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValidationError(f"'{name}' must be an object, got {section!r}")
    return section


def _field(section: Dict[str, Any], dotted_key: str, default: Any, convert: Callable[[Any], Any]) -> Any:
    value = section.get(dotted_key.split(".", 1)[1], default)
    try:
        return convert(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{dotted_key}: invalid value {value!r}") from exc


def _coerce_address(value: Any) -> int:
    # JSON has no hex literals, so "0x77" arrives as a string
    address = int(value, 0) if isinstance(value, str) else int(value)
    if not 0 <= address <= 0x7F:
        raise ValueError(f"I2C address 0x{address:X} is outside 7-bit range")
    return address


def _parse_override(item: str) -> tuple[str, Any]:
    key, sep, raw_value = item.partition("=")
    key = key.strip()
    if not sep:
        raise ValidationError(f"Override '{item}' must use key=value syntax")
    if not key:
        raise ValidationError("Override key may not be empty")
    return key, _coerce_value(raw_value.strip())


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    if raw.lower() in {"null", "none"}:
        return None
    if raw.lower().startswith("0x"):
        try:
            return int(raw, 16)
        except ValueError:
            pass
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    section, dot, name = dotted_key.partition(".")
    if not dot:
        if section != "output_csv":
            raise ValidationError(f"Unknown config key '{dotted_key}'")
        target[section] = value
        return
    if section not in SECTIONS or not name or "." in name:
        raise ValidationError(f"Unknown config key '{dotted_key}'")
    target.setdefault(section, {})[name] = value
