"""Drivers for sensors reachable through the I2C bridge."""

from .bmp180 import BMP180, BMP180_ADDRESS, CalibrationWords, Coefficients

__all__ = ["BMP180", "BMP180_ADDRESS", "CalibrationWords", "Coefficients"]
