"""Threshold checks on sensor readings and SMS dispatch of the result."""

from __future__ import annotations

import logging
from typing import List

from models.records import ThresholdInput
from services.notifier import TwilioNotifier

logger = logging.getLogger(__name__)

ALERT_PREFIX = "Bhoomi Dut Alert:"

MOISTURE_HIGH = "CRITICAL: Soil moisture is too high (>80%). Risk of root rot. Stop watering immediately."
MOISTURE_LOW = "ALERT: Soil moisture is low (<20%). Crops need water immediately."
TEMPERATURE_HIGH = "WARNING: High temperature detected (>35°C). Ensure adequate irrigation."
TEMPERATURE_LOW = "WARNING: Low temperature detected (<10°C). Protect crops from frost."
HUMIDITY_LOW = "WARNING: Low humidity (<30%). Risk of dehydration."
HUMIDITY_HIGH = "WARNING: High humidity (>90%). Risk of fungal diseases."
NITROGEN_LOW = "ALERT: Nitrogen levels are critically low. Consider fertilization."
PHOSPHORUS_LOW = "ALERT: Phosphorus levels are critically low."
POTASSIUM_LOW = "ALERT: Potassium levels are critically low."


def evaluate_thresholds(reading: ThresholdInput) -> List[str]:
    """Return the alert messages ``reading`` triggers, in a fixed order."""
    alerts: List[str] = []

    if reading.soil_moisture is not None:
        if reading.soil_moisture > 80:
            alerts.append(MOISTURE_HIGH)
        elif reading.soil_moisture < 20:
            alerts.append(MOISTURE_LOW)

    if reading.temperature is not None:
        if reading.temperature > 35:
            alerts.append(TEMPERATURE_HIGH)
        elif reading.temperature < 10:
            alerts.append(TEMPERATURE_LOW)

    if reading.humidity is not None:
        if reading.humidity < 30:
            alerts.append(HUMIDITY_LOW)
        elif reading.humidity > 90:
            alerts.append(HUMIDITY_HIGH)

    if reading.nitrogen is not None and reading.nitrogen < 20:
        alerts.append(NITROGEN_LOW)
    if reading.phosphorus is not None and reading.phosphorus < 20:
        alerts.append(PHOSPHORUS_LOW)
    if reading.potassium is not None and reading.potassium < 20:
        alerts.append(POTASSIUM_LOW)

    return alerts


def format_alert_message(alerts: List[str]) -> str:
    return "\n".join([ALERT_PREFIX, *alerts])


class AlertService:
    """Evaluates a reading and texts the farmer when anything crosses a threshold."""

    def __init__(self, notifier: TwilioNotifier) -> None:
        self._notifier = notifier

    async def check_and_dispatch(self, reading: ThresholdInput) -> List[str]:
        alerts = evaluate_thresholds(reading)
        if alerts:
            await self._notifier.send_sms(format_alert_message(alerts))
        logger.info("Alert check complete", extra={"alert_count": len(alerts)})
        return alerts
