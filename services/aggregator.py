"""Aggregation logic for sensor readings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable

from models.records import SensorReading, Trend

METRICS = (
    "soil_moisture",
    "temperature",
    "humidity",
    "nitrogen",
    "phosphorus",
    "potassium",
)


@dataclass
class MetricSummary:
    min_value: float | None = None
    max_value: float | None = None
    mean_value: float | None = None


@dataclass
class AggregationSummary:
    """Computed statistics for a window of sensor readings."""

    row_count: int = 0
    metrics: Dict[str, MetricSummary] = field(default_factory=dict)


def calculate_trend(current: float, previous: float) -> Trend:
    """Percent change of ``current`` against ``previous``.

    A zero baseline yields no change rather than an infinite one.
    """
    if previous == 0:
        return Trend(change=0.0, increasing=False)
    change = (current - previous) / abs(previous) * 100
    return Trend(change=abs(round(change, 1)), increasing=change > 0)


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation."""

    def aggregate(self, readings: Iterable[SensorReading]) -> AggregationSummary:
        summary = AggregationSummary(metrics={name: MetricSummary() for name in METRICS})
        totals = {name: 0.0 for name in METRICS}

        for reading in readings:
            summary.row_count += 1
            for name in METRICS:
                value = getattr(reading, name)
                totals[name] += value
                metric = summary.metrics[name]
                if metric.min_value is None or value < metric.min_value:
                    metric.min_value = value
                if metric.max_value is None or value > metric.max_value:
                    metric.max_value = value

        if summary.row_count:
            for name in METRICS:
                summary.metrics[name].mean_value = totals[name] / summary.row_count

        return summary

    def trend(self, readings: list[SensorReading], metric: str = "soil_moisture") -> Trend:
        """Trend of ``metric`` between the newest reading and the one before it."""
        if not readings:
            return Trend(change=0.0, increasing=False)
        latest = readings[-1]
        previous = readings[-2] if len(readings) > 1 else latest
        return calculate_trend(self._value(latest, metric), self._value(previous, metric))

    @staticmethod
    def _value(reading: SensorReading, metric: str) -> float:
        if metric == "npk_average":
            return reading.npk_average
        return getattr(reading, metric)
