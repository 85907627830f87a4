"""Open-Meteo forecasts and the evapotranspiration estimates built on them."""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from app.schemas import (
    CurrentWeather,
    DetailedWeather,
    Evapotranspiration,
    EvapotranspirationPoint,
    ForecastDay,
)
from services.errors import UpstreamError
from services.upstream import json_or_none, send

logger = logging.getLogger(__name__)

_UPSTREAM = "open-meteo"
OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"
FORECAST_DAYS = 5

WEATHER_CONDITIONS = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Foggy",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    56: "Light freezing drizzle",
    57: "Dense freezing drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    66: "Light freezing rain",
    67: "Heavy freezing rain",
    71: "Slight snow fall",
    73: "Moderate snow fall",
    75: "Heavy snow fall",
    77: "Snow grains",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    85: "Slight snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}


def weather_condition(code: Optional[int]) -> str:
    if code is None:
        return "Unknown"
    return WEATHER_CONDITIONS.get(int(code), "Unknown")


def weather_icon(code: Optional[int]) -> str:
    if code == 0:
        return "Sun"
    if code is not None and code < 3:
        return "Cloud"
    return "CloudRain"


def _saturation_vapor_pressure(temperature: float) -> float:
    return 0.611 * math.exp((17.27 * temperature) / (temperature + 237.3))


def calculate_pet(
    temperature: float,
    humidity: float,
    wind_speed: float,
    solar_radiation: float = 0.0,
) -> float:
    """Potential evapotranspiration in mm/day (simplified Penman-Monteith)."""
    delta = 0.409 * math.exp(-0.0005 * temperature)
    gamma = 0.066
    net_radiation = solar_radiation * 0.77
    es = _saturation_vapor_pressure(temperature)
    ea = es * (humidity / 100)
    vpd = es - ea
    pet = (0.408 * delta * net_radiation + gamma * (900 / (temperature + 273)) * wind_speed * vpd) / (
        delta + gamma * (1 + 0.34 * wind_speed)
    )
    return max(0.0, pet)


def calculate_aet(pet: float, soil_moisture: float, precipitation: float = 0.0) -> float:
    """Actual evapotranspiration; 50% moisture and 10 mm of rain saturate the factors."""
    moisture_factor = min(1.0, soil_moisture / 50)
    precipitation_factor = min(1.0, precipitation / 10)
    return pet * moisture_factor * (1 + precipitation_factor * 0.2)


def calculate_evaporation(temperature: float, humidity: float, wind_speed: float) -> float:
    saturation = _saturation_vapor_pressure(temperature)
    vapor = saturation * (humidity / 100)
    return max(0.0, (saturation - vapor) * wind_speed * 0.1)


def estimate_soil_moisture(base: float, temperature: float, precipitation: float) -> float:
    return max(10.0, min(90.0, base + precipitation * 2 - (temperature - 25) * 0.5))


def feels_like(temperature: float, humidity: float, wind_speed: float) -> float:
    return temperature + (humidity / 100) * 2 - wind_speed / 10


def _at(values: Optional[Sequence[Any]], index: int, default: float = 0.0) -> float:
    if not values or index >= len(values) or values[index] is None:
        return default
    return float(values[index])


def _day_label(index: int, day: date) -> str:
    if index == 0:
        return "Today"
    if index == 1:
        return "Tomorrow"
    return day.strftime("%A")


class WeatherClient:

    def __init__(
        self,
        http: httpx.AsyncClient,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        base_url: str = OPEN_METEO_URL,
    ) -> None:
        self._http = http
        self._clock = clock
        self._base_url = base_url

    async def current_weather(self, latitude: float, longitude: float) -> Dict[str, float]:
        data = await self._forecast(
            latitude,
            longitude,
            hourly="temperature_2m,relative_humidity_2m",
        )
        hour = self._local_now(data).hour
        return {
            "temperature": float(data["current_weather"]["temperature"]),
            "humidity": _at(data["hourly"].get("relative_humidity_2m"), hour),
        }

    async def detailed_weather(self, latitude: float, longitude: float) -> DetailedWeather:
        data = await self._forecast(
            latitude,
            longitude,
            hourly="temperature_2m,relative_humidity_2m,precipitation_probability,"
            "wind_speed_10m,pressure_msl,visibility",
            daily="temperature_2m_max,temperature_2m_min,precipitation_probability_max,weather_code",
        )
        now = self._local_now(data)
        hour = now.hour
        hourly = data["hourly"]
        daily = data["daily"]

        temperature = float(data["current_weather"]["temperature"])
        humidity = _at(hourly.get("relative_humidity_2m"), hour)
        wind_speed = _at(hourly.get("wind_speed_10m"), hour)

        forecast: List[ForecastDay] = []
        codes = daily.get("weather_code") or []
        for index in range(min(FORECAST_DAYS, len(codes))):
            code = codes[index]
            forecast.append(
                ForecastDay(
                    day=_day_label(index, now.date() + timedelta(days=index)),
                    high=round(_at(daily.get("temperature_2m_max"), index)),
                    low=round(_at(daily.get("temperature_2m_min"), index)),
                    condition=weather_condition(code),
                    icon=weather_icon(code),
                    precipitation=round(_at(daily.get("precipitation_probability_max"), index)),
                )
            )

        evapotranspiration: Optional[Evapotranspiration] = None
        try:
            evapotranspiration = await self.evapotranspiration(latitude, longitude)
        except UpstreamError as exc:
            logger.warning(
                "Evapotranspiration unavailable",
                extra={"upstream": _UPSTREAM, "reason": str(exc)},
            )

        return DetailedWeather(
            current=CurrentWeather(
                temperature=round(temperature),
                condition=weather_condition(data["current_weather"].get("weathercode")),
                humidity=round(humidity),
                wind_speed=round(wind_speed),
                pressure=round(_at(hourly.get("pressure_msl"), hour)),
                visibility=round(_at(hourly.get("visibility"), hour) / 1000),
                feels_like=round(feels_like(temperature, humidity, wind_speed)),
            ),
            forecast=forecast,
            evapotranspiration=evapotranspiration,
        )

    async def evapotranspiration(self, latitude: float, longitude: float) -> Evapotranspiration:
        data = await self._forecast(
            latitude,
            longitude,
            hourly="temperature_2m,relative_humidity_2m,wind_speed_10m,precipitation",
            daily="temperature_2m_max,temperature_2m_min,precipitation_sum",
        )
        now = self._local_now(data)
        hour = now.hour
        hourly = data["hourly"]
        daily = data["daily"]

        temperature = float(data["current_weather"]["temperature"])
        humidity = _at(hourly.get("relative_humidity_2m"), hour)
        wind_speed = _at(hourly.get("wind_speed_10m"), hour)
        precipitation = _at(hourly.get("precipitation"), hour)

        # No soil probe here; moisture is estimated from rain and heat around 60%.
        soil_moisture = estimate_soil_moisture(60.0, temperature, precipitation)
        pet = calculate_pet(temperature, humidity, wind_speed)
        current = EvapotranspirationPoint(
            date=now.date().isoformat(),
            pet=round(pet, 2),
            aet=round(calculate_aet(pet, soil_moisture, precipitation), 2),
            evaporation=round(calculate_evaporation(temperature, humidity, wind_speed), 2),
            soil_moisture=round(soil_moisture),
        )

        forecast: List[EvapotranspirationPoint] = []
        highs = daily.get("temperature_2m_max") or []
        for index in range(min(FORECAST_DAYS, len(highs))):
            day_temperature = (
                _at(highs, index) + _at(daily.get("temperature_2m_min"), index)
            ) / 2
            day_precipitation = _at(daily.get("precipitation_sum"), index)
            day_moisture = estimate_soil_moisture(soil_moisture, day_temperature, day_precipitation)
            day_pet = calculate_pet(day_temperature, humidity, wind_speed)
            forecast.append(
                EvapotranspirationPoint(
                    date=(now.date() + timedelta(days=index)).isoformat(),
                    pet=round(day_pet, 2),
                    aet=round(calculate_aet(day_pet, day_moisture, day_precipitation), 2),
                    evaporation=round(
                        calculate_evaporation(day_temperature, humidity, wind_speed), 2
                    ),
                    soil_moisture=round(day_moisture),
                )
            )

        return Evapotranspiration(current=current, forecast=forecast)

    async def _forecast(self, latitude: float, longitude: float, **series: str) -> Dict[str, Any]:
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "current_weather": "true",
            "timezone": "auto",
            **series,
        }
        response = await send(self._http, _UPSTREAM, "GET", self._base_url, params=params)
        if response.is_error:
            raise UpstreamError(
                _UPSTREAM, f"Open-Meteo API error: {response.status_code}", response.status_code
            )
        data = json_or_none(response)
        if not isinstance(data, dict) or "current_weather" not in data:
            raise UpstreamError(_UPSTREAM, "Open-Meteo returned an unexpected payload")
        data.setdefault("hourly", {})
        data.setdefault("daily", {})
        return data

    def _local_now(self, data: Dict[str, Any]) -> datetime:
        """Current time at the forecast location; hourly arrays start at its midnight."""
        offset = int(data.get("utc_offset_seconds") or 0)
        return self._clock().astimezone(timezone(timedelta(seconds=offset)))
