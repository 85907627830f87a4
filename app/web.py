from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Dict, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from models.records import ThresholdInput
from services.alerts import evaluate_thresholds
from services.container import FarmServices, build_default_services
from services.errors import GatewayError


templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


def get_services() -> FarmServices:
    return build_default_services()


async def _attempt(pending: Awaitable[Any]) -> Tuple[Any, str | None]:
    """Result of ``pending`` or the error message it failed with."""
    try:
        return await pending, None
    except GatewayError as exc:
        return None, str(exc)


router = APIRouter(include_in_schema=False)


@router.get("/ui", name="ui_index", response_class=HTMLResponse)
async def ui_index(
    request: Request,
    services: FarmServices = Depends(get_services),
) -> HTMLResponse:
    settings = services.settings
    (snapshot, sensor_error), (pump, pump_error), (weather, weather_error) = await asyncio.gather(
        _attempt(services.thingspeak.soil_moisture_snapshot()),
        _attempt(services.pump.get_state()),
        _attempt(services.weather.current_weather(settings.farm_latitude, settings.farm_longitude)),
    )

    alerts = []
    if snapshot is not None:
        alerts = evaluate_thresholds(ThresholdInput.from_reading(snapshot.current))

    context: Dict[str, Any] = {
        "request": request,
        "location_name": settings.farm_location_name,
        "snapshot": snapshot,
        "sensor_error": sensor_error,
        "alerts": alerts,
        "pump": pump,
        "pump_error": pump_error,
        "weather": weather,
        "weather_error": weather_error,
    }
    return templates.TemplateResponse(request, "ui/index.html", context)
