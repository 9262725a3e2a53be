"""Host-side access to I2C sensors behind a serial bridge microcontroller."""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - fallback when package metadata missing
    __version__ = version("vironmetre")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

__all__ = ["__version__"]
