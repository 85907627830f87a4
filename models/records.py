"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class SensorReading:
    """One ThingSpeak feed row from the soil/climate channel."""

    timestamp: datetime
    soil_moisture: float
    temperature: float
    humidity: float
    nitrogen: float
    phosphorus: float
    potassium: float

    @property
    def npk_average(self) -> float:
        return (self.nitrogen + self.phosphorus + self.potassium) / 3


@dataclass(slots=True)
class VitalStatsReading:
    """One feed row from the crop vital-stats channel."""

    timestamp: datetime
    red: float
    nir: float
    ndvi: float
    ratio: float
    chlorophyll: float
    nitrogen: float


@dataclass(frozen=True, slots=True)
class Trend:
    """Percent change between the two most recent values."""

    change: float
    increasing: bool


@dataclass(frozen=True, slots=True)
class ThresholdInput:
    """Readings checked against alert thresholds; absent metrics are skipped."""

    soil_moisture: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    nitrogen: Optional[float] = None
    phosphorus: Optional[float] = None
    potassium: Optional[float] = None

    @classmethod
    def from_reading(cls, reading: SensorReading) -> "ThresholdInput":
        return cls(
            soil_moisture=reading.soil_moisture,
            temperature=reading.temperature,
            humidity=reading.humidity,
            nitrogen=reading.nitrogen,
            phosphorus=reading.phosphorus,
            potassium=reading.potassium,
        )
