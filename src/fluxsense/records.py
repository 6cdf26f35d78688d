"""Value types shared by the session engine, the CSV codecs and flux analysis."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Measurement:
    """One decoded DATA sample. ``None`` means the channel was not reported."""

    timestamp: int
    co2: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None


@dataclass(frozen=True)
class CalibrationSettings:
    co2_multiplier: float = 1.0
    co2_offset: float = 0.0
    hardware_calibration_reference: Optional[int] = None

    def apply(self, raw_co2: float) -> float:
        return raw_co2 * self.co2_multiplier + self.co2_offset


@dataclass(frozen=True)
class Position:
    latitude: float = 0.0
    longitude: float = 0.0
    altitude: float = 0.0
