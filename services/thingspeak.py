"""ThingSpeak channel reads and pump-field writes."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import httpx

from models.records import SensorReading, Trend, VitalStatsReading
from services.aggregator import Aggregator
from services.errors import ConfigurationError, UpstreamError
from services.upstream import json_or_none, send
from settings import Settings

logger = logging.getLogger(__name__)

_UPSTREAM = "thingspeak"
DEFAULT_RANGE = "24h"
_RESULT_COUNTS = {
    "1h": 60,
    "24h": 144,
    "7d": 168,
    "30d": 720,
    "1y": 8760,
}
_PUMP_ON = {"on", "1"}
_PUMP_OFF = {"off", "0"}
INVALID_PUMP_STATE = "Invalid state. Use 'ON', 'OFF', 1, or 0"


def result_count(time_range: str) -> int:
    return _RESULT_COUNTS.get(time_range, _RESULT_COUNTS[DEFAULT_RANGE])


def parse_numeric(value: Any, fallback: float = 0.0) -> float:
    if value is None:
        return fallback
    candidate = str(value).strip()
    if not candidate:
        return fallback
    try:
        parsed = float(candidate)
    except ValueError:
        return fallback
    return parsed if math.isfinite(parsed) else fallback


def parse_timestamp(value: str) -> datetime:
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def parse_sensor_feed(feed: Mapping[str, Any]) -> SensorReading:
    return SensorReading(
        timestamp=parse_timestamp(str(feed.get("created_at") or "")),
        soil_moisture=parse_numeric(feed.get("field1")),
        temperature=parse_numeric(feed.get("field2")),
        humidity=parse_numeric(feed.get("field3")),
        nitrogen=parse_numeric(feed.get("field5")),
        phosphorus=parse_numeric(feed.get("field6")),
        potassium=parse_numeric(feed.get("field7")),
    )


def parse_vital_feed(feed: Mapping[str, Any]) -> VitalStatsReading:
    return VitalStatsReading(
        timestamp=parse_timestamp(str(feed.get("created_at") or "")),
        red=parse_numeric(feed.get("field1")),
        nir=parse_numeric(feed.get("field2")),
        ndvi=parse_numeric(feed.get("field3")),
        ratio=parse_numeric(feed.get("field4")),
        chlorophyll=parse_numeric(feed.get("field5")),
        nitrogen=parse_numeric(feed.get("field6")),
    )


def parse_pump_action(body: Optional[Mapping[str, Any]]) -> int:
    """Map an ``action``/``state``/``value`` field onto the pump field value.

    The first of the three keys that is present wins.
    """
    payload = body or {}
    action = None
    for key in ("action", "state", "value"):
        if payload.get(key) is not None:
            action = payload[key]
            break
    if isinstance(action, bool) or action is None:
        raise ValueError(INVALID_PUMP_STATE)
    if isinstance(action, float) and action.is_integer():
        action = int(action)
    normalized = str(action).strip().lower()
    if normalized in _PUMP_ON:
        return 1
    if normalized in _PUMP_OFF:
        return 0
    raise ValueError(INVALID_PUMP_STATE)


def _pump_state(value: int) -> str:
    return "on" if value == 1 else "off"


@dataclass
class SoilMoistureSnapshot:
    current: SensorReading
    history: List[SensorReading]
    trend: Trend


@dataclass
class NpkSnapshot:
    current: SensorReading
    trend: Trend


@dataclass
class PumpWriteResult:
    state: str
    entry_id: Optional[str]
    rate_limited: bool = False


@dataclass
class PumpState:
    state: str
    value: int
    last_update: Optional[str]


class ThingSpeakClient:
    """Read-only access to the sensor and vital-stats channels."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        settings: Settings,
        aggregator: Optional[Aggregator] = None,
    ) -> None:
        self._http = http
        self._settings = settings
        self.aggregator = aggregator or Aggregator()

    async def fetch_feeds(
        self, channel_id: Optional[str], api_key: Optional[str], results: int
    ) -> List[Dict[str, Any]]:
        if not channel_id or not api_key:
            raise ConfigurationError(
                "ThingSpeak API configuration is missing. Set THINGSPEAK_CHANNEL_ID "
                "and THINGSPEAK_READ_API_KEY."
            )
        url = f"{self._settings.thingspeak_base_url}/channels/{channel_id}/feeds.json"
        response = await send(
            self._http, _UPSTREAM, "GET", url, params={"api_key": api_key, "results": results}
        )
        if response.is_error:
            raise UpstreamError(
                _UPSTREAM,
                f"ThingSpeak API error: {response.status_code} - {response.text}",
                response.status_code,
            )
        payload = json_or_none(response)
        if not isinstance(payload, dict):
            raise UpstreamError(_UPSTREAM, "ThingSpeak returned a malformed feed payload.")
        feeds = payload.get("feeds") or []
        logger.debug("Fetched ThingSpeak feeds", extra={"results": len(feeds)})
        return feeds

    async def history(self, time_range: str = DEFAULT_RANGE) -> List[SensorReading]:
        feeds = await self.fetch_feeds(
            self._settings.channel_id, self._settings.read_api_key, result_count(time_range)
        )
        return self._parse_all(feeds, parse_sensor_feed)

    async def latest_reading(self) -> Optional[SensorReading]:
        feeds = await self.fetch_feeds(self._settings.channel_id, self._settings.read_api_key, 1)
        readings = self._parse_all(feeds, parse_sensor_feed)
        return readings[-1] if readings else None

    async def soil_moisture_snapshot(self, time_range: str = DEFAULT_RANGE) -> SoilMoistureSnapshot:
        readings = await self.history(time_range)
        if not readings:
            raise UpstreamError(
                _UPSTREAM,
                "No data available from ThingSpeak. The channel might be empty or "
                "the API key might be invalid.",
            )
        return SoilMoistureSnapshot(
            current=readings[-1],
            history=readings,
            trend=self.aggregator.trend(readings, "soil_moisture"),
        )

    async def npk_snapshot(self) -> NpkSnapshot:
        readings = await self.history(DEFAULT_RANGE)
        if not readings:
            raise UpstreamError(_UPSTREAM, "No NPK data available")
        return NpkSnapshot(
            current=readings[-1],
            trend=self.aggregator.trend(readings, "npk_average"),
        )

    async def vital_stats(self, time_range: str = DEFAULT_RANGE) -> List[VitalStatsReading]:
        if not self._settings.vital_channel_id or not self._settings.vital_read_api_key:
            raise ConfigurationError(
                "ThingSpeak configuration missing for Vital Stats. Set "
                "THINGSPEAK_CHANNEL_ID_2 and THINGSPEAK_READ_API_KEY_2."
            )
        feeds = await self.fetch_feeds(
            self._settings.vital_channel_id,
            self._settings.vital_read_api_key,
            result_count(time_range),
        )
        return self._parse_all(feeds, parse_vital_feed)

    @staticmethod
    def _parse_all(feeds: List[Dict[str, Any]], parser) -> list:
        parsed = []
        for feed in feeds:
            try:
                parsed.append(parser(feed))
            except ValueError:
                logger.warning(
                    "Skipping feed with unreadable timestamp",
                    extra={"reason": "invalid timestamp", "field": "created_at"},
                )
        return parsed


class PumpController:
    """Drives the irrigation pump through a ThingSpeak field."""

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self._http = http
        self._settings = settings

    @property
    def field_name(self) -> str:
        return f"field{self._settings.pump_field}"

    async def set_state(self, value: int) -> PumpWriteResult:
        if not self._settings.write_api_key:
            raise ConfigurationError(
                "Missing ThingSpeak write API key. Set THINGSPEAK_WRITE_API_KEY."
            )
        url = f"{self._settings.thingspeak_base_url}/update.json"
        params = {"api_key": self._settings.write_api_key, self.field_name: value}
        response = await send(self._http, _UPSTREAM, "POST", url, params=params)
        text = response.text.strip()
        state = _pump_state(value)

        if response.is_error:
            logger.error(
                "ThingSpeak write failed",
                extra={"upstream": _UPSTREAM, "status": response.status_code},
            )
            raise UpstreamError(
                _UPSTREAM, "Failed to update ThingSpeak", response.status_code
            )

        # ThingSpeak answers "0" when writes arrive faster than the channel allows.
        if text == "0":
            logger.warning(
                "ThingSpeak rate limited pump write",
                extra={"field": self.field_name, "state": state},
            )
            return PumpWriteResult(state=state, entry_id=None, rate_limited=True)

        logger.info("Pump state written", extra={"field": self.field_name, "state": state})
        return PumpWriteResult(state=state, entry_id=text)

    async def get_state(self) -> PumpState:
        channel_id = self._settings.pump_channel_id
        if not channel_id:
            raise ConfigurationError(
                "Missing ThingSpeak pump channel. Set THINGSPEAK_PUMP_CHANNEL_ID or "
                "THINGSPEAK_CHANNEL_ID."
            )
        url = (
            f"{self._settings.thingspeak_base_url}/channels/{channel_id}"
            f"/fields/{self._settings.pump_field}/last.json"
        )
        params = {}
        if self._settings.read_api_key:
            params["api_key"] = self._settings.read_api_key
        response = await send(self._http, _UPSTREAM, "GET", url, params=params)
        if response.is_error:
            raise UpstreamError(
                _UPSTREAM, "Failed to read from ThingSpeak", response.status_code
            )
        payload = json_or_none(response)
        if not isinstance(payload, dict):
            payload = {}
        is_on = str(payload.get(self.field_name)).strip() == "1"
        return PumpState(
            state="on" if is_on else "off",
            value=1 if is_on else 0,
            last_update=payload.get("created_at"),
        )
