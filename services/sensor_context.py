"""Farm readings bundled for prompting the assistant."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from services.errors import GatewayError
from services.geocoding import Geocoder
from services.thingspeak import ThingSpeakClient
from services.weather import WeatherClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SensorContext:
    latitude: float
    longitude: float
    location_name: str
    temperature: float = 0.0
    humidity: float = 0.0
    soil_moisture: float = 0.0
    nitrogen: float = 0.0
    phosphorus: float = 0.0
    potassium: float = 0.0

    @property
    def npk_average(self) -> float:
        return (self.nitrogen + self.phosphorus + self.potassium) / 3

    def gemini_variables(self) -> Dict[str, Any]:
        return {
            "locationName": self.location_name,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "soilMoisture": self.soil_moisture,
            "npkNitrogen": self.nitrogen,
            "npkPhosphorus": self.phosphorus,
            "npkPotassium": self.potassium,
            "npkAverage": self.npk_average,
        }

    def describe(self) -> str:
        return (
            f"Location: {self.location_name}, Humidity: {self.humidity}%, "
            f"Soil Moisture: {self.soil_moisture}%, NPK: N={self.nitrogen}ppm, "
            f"P={self.phosphorus}ppm, K={self.potassium}ppm"
        )


class SensorContextBuilder:
    """Collects weather, soil moisture and NPK for one location.

    Sources are queried concurrently. A failing source contributes zeros and a
    warning so the assistant can still be prompted.
    """

    def __init__(
        self,
        weather: WeatherClient,
        thingspeak: ThingSpeakClient,
        geocoder: Geocoder,
    ) -> None:
        self._weather = weather
        self._thingspeak = thingspeak
        self._geocoder = geocoder

    async def build(
        self,
        latitude: float,
        longitude: float,
        location_name: Optional[str] = None,
    ) -> SensorContext:
        weather, moisture, npk, name = await asyncio.gather(
            self._guard("weather", self._weather.current_weather(latitude, longitude)),
            self._guard("soil_moisture", self._thingspeak.soil_moisture_snapshot()),
            self._guard("npk", self._thingspeak.npk_snapshot()),
            self._resolve_name(latitude, longitude, location_name),
        )

        fields: Dict[str, Any] = {}
        if weather is not None:
            fields["temperature"] = weather["temperature"]
            fields["humidity"] = weather["humidity"]
        if moisture is not None:
            fields["soil_moisture"] = moisture.current.soil_moisture
        if npk is not None:
            fields["nitrogen"] = npk.current.nitrogen
            fields["phosphorus"] = npk.current.phosphorus
            fields["potassium"] = npk.current.potassium

        return SensorContext(
            latitude=latitude,
            longitude=longitude,
            location_name=name,
            **fields,
        )

    async def _resolve_name(
        self, latitude: float, longitude: float, location_name: Optional[str]
    ) -> str:
        if location_name:
            return location_name
        return await self._geocoder.location_name(latitude, longitude)

    @staticmethod
    async def _guard(source: str, pending: Any) -> Any:
        try:
            return await pending
        except GatewayError as exc:
            logger.warning(
                "Sensor source unavailable",
                extra={"upstream": source, "reason": str(exc)},
            )
            return None
