from __future__ import annotations

from dataclasses import replace
from typing import Callable

import httpx

from settings import Settings

Handler = Callable[[httpx.Request], httpx.Response]

BASE_SETTINGS = Settings(
    thingspeak_base_url="https://api.thingspeak.test",
    channel_id="1001",
    read_api_key="READKEY",
    vital_channel_id="2002",
    vital_read_api_key="VITALKEY",
    pump_channel_id="1001",
    write_api_key="WRITEKEY",
    pump_field=8,
    ml_service_url="http://ml.test",
    gemini_api_key="AIzaTESTKEY123456",
    gemini_model="models/gemini-2.0-flash-exp",
    transcription_model="models/gemini-2.0-flash",
    realtime_model="models/gemini-realtime-test",
    google_project_id=None,
    twilio_account_sid="AC123",
    twilio_auth_token="secret",
    twilio_from_number="+15550000001",
    twilio_to_number="+15550000002",
    opencage_api_key="OCKEY",
    omnidim_base_url="https://omnidim.test",
    omnidim_api_key="OMNIKEY",
    omnidim_agent_id="42",
    omnidim_from_number_id=None,
    farm_latitude=22.5626,
    farm_longitude=88.363,
    farm_location_name="Test Farm",
    http_timeout=5.0,
    log_level="INFO",
)


def make_settings(**overrides) -> Settings:
    return replace(BASE_SETTINGS, **overrides)


def mock_client(handler: Handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def feed(entry_id: int, created_at: str, **fields: str) -> dict:
    row = {"entry_id": entry_id, "created_at": created_at}
    row.update(fields)
    return row
