"""Reverse geocoding through OpenCage with a proximity sanity check."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional

import httpx

from services.errors import UpstreamError
from services.upstream import json_or_none, send

logger = logging.getLogger(__name__)

_UPSTREAM = "opencage"
OPENCAGE_URL = "https://api.opencagedata.com/geocode/v1/json"
# Roughly one kilometre expressed in degrees.
MAX_RESULT_DISTANCE = 0.01


def coordinates_label(latitude: float, longitude: float) -> str:
    return f"Coordinates: {latitude:.6f}°, {longitude:.6f}°"


def degree_distance(lat_a: float, lng_a: float, lat_b: float, lng_b: float) -> float:
    return math.hypot(lat_a - lat_b, lng_a - lng_b)


def place_name(components: Dict[str, Any]) -> str:
    parts = [components[key] for key in ("city", "state", "country") if components.get(key)]
    return ", ".join(parts) if parts else "Unknown Location"


class Geocoder:

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: Optional[str],
        base_url: str = OPENCAGE_URL,
    ) -> None:
        self._http = http
        self._api_key = api_key
        self._base_url = base_url

    async def location_name(self, latitude: float, longitude: float) -> str:
        """Best-effort place name; never returns a name for a different place."""
        if not self._api_key:
            return coordinates_label(latitude, longitude)

        try:
            response = await send(
                self._http,
                _UPSTREAM,
                "GET",
                self._base_url,
                params={"q": f"{latitude} {longitude}", "key": self._api_key, "language": "en"},
            )
        except UpstreamError:
            return coordinates_label(latitude, longitude)

        if response.is_error:
            logger.warning(
                "OpenCage lookup failed",
                extra={"upstream": _UPSTREAM, "status": response.status_code},
            )
            return coordinates_label(latitude, longitude)

        payload = json_or_none(response) or {}
        results = payload.get("results") if isinstance(payload, dict) else None
        if not results:
            return "Location Name Unavailable"

        best = results[0]
        geometry = best.get("geometry") or {}
        try:
            distance = degree_distance(
                latitude, longitude, float(geometry["lat"]), float(geometry["lng"])
            )
        except (KeyError, TypeError, ValueError):
            return coordinates_label(latitude, longitude)

        if distance > MAX_RESULT_DISTANCE:
            logger.info(
                "Discarding distant geocoding result",
                extra={"upstream": _UPSTREAM, "reason": f"distance={distance:.4f}"},
            )
            return coordinates_label(latitude, longitude)

        return place_name(best.get("components") or {})
