from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_CHANNEL_ID_ENV = "THINGSPEAK_CHANNEL_ID"
_READ_KEY_ENV = "THINGSPEAK_READ_API_KEY"
_CHANNEL_ID_2_ENV = "THINGSPEAK_CHANNEL_ID_2"
_READ_KEY_2_ENV = "THINGSPEAK_READ_API_KEY_2"
_PUMP_CHANNEL_ENV = "THINGSPEAK_PUMP_CHANNEL_ID"
_WRITE_KEY_ENV = "THINGSPEAK_WRITE_API_KEY"
_PUMP_FIELD_ENV = "THINGSPEAK_PUMP_FIELD"
_THINGSPEAK_URL_ENV = "THINGSPEAK_BASE_URL"
_ML_URL_ENV = "ML_SERVICE_URL"
_GEMINI_KEY_ENV = "GEMINI_API_KEY"
_GOOGLE_KEY_ENV = "GOOGLE_API_KEY"
_GEMINI_MODEL_ENV = "GEMINI_MODEL"
_TRANSCRIPTION_MODEL_ENV = "GEMINI_TRANSCRIPTION_MODEL"
_REALTIME_MODEL_ENV = "GEMINI_REALTIME_MODEL"
_GOOGLE_PROJECT_ENV = "GOOGLE_CLOUD_PROJECT"
_TWILIO_SID_ENV = "TWILIO_ACCOUNT_SID"
_TWILIO_TOKEN_ENV = "TWILIO_AUTH_TOKEN"
_TWILIO_FROM_ENV = "TWILIO_FROM_NUMBER"
_TWILIO_TO_ENV = "TWILIO_TO_NUMBER"
_OPENCAGE_KEY_ENV = "OPENCAGE_API_KEY"
_OMNIDIM_URL_ENV = "OMNIDIM_BASE_URL"
_OMNIDIM_KEY_ENV = "OMNIDIM_API_KEY"
_OMNIDIM_AGENT_ENV = "OMNIDIM_AGENT_ID"
_OMNIDIM_FROM_ENV = "OMNIDIM_FROM_NUMBER_ID"
_LATITUDE_ENV = "FARM_LATITUDE"
_LONGITUDE_ENV = "FARM_LONGITUDE"
_LOCATION_NAME_ENV = "FARM_LOCATION_NAME"
_HTTP_TIMEOUT_ENV = "HTTP_TIMEOUT_SECONDS"
_LOG_LEVEL_ENV = "LOG_LEVEL"
_HOST_ENV = "GATEWAY_HOST"
_PORT_ENV = "GATEWAY_PORT"


@dataclass(frozen=True)
class Settings:
    thingspeak_base_url: str
    channel_id: Optional[str]
    read_api_key: Optional[str]
    vital_channel_id: Optional[str]
    vital_read_api_key: Optional[str]
    pump_channel_id: Optional[str]
    write_api_key: Optional[str]
    pump_field: int
    ml_service_url: str
    gemini_api_key: Optional[str]
    gemini_model: str
    transcription_model: str
    realtime_model: str
    google_project_id: Optional[str]
    twilio_account_sid: Optional[str]
    twilio_auth_token: Optional[str]
    twilio_from_number: Optional[str]
    twilio_to_number: Optional[str]
    opencage_api_key: Optional[str]
    omnidim_base_url: str
    omnidim_api_key: Optional[str]
    omnidim_agent_id: Optional[str]
    omnidim_from_number_id: Optional[str]
    farm_latitude: float
    farm_longitude: float
    farm_location_name: str
    http_timeout: float
    log_level: str
    host: str = "127.0.0.1"
    port: int = 3000


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_float(name: str, default: float, positive: bool = False) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if positive and parsed <= 0:
        return default
    return parsed


def _read_int(name: str, default: int, low: int, high: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if low <= parsed <= high else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    channel_id = _read_optional_env(_CHANNEL_ID_ENV)
    return Settings(
        thingspeak_base_url=_read_str_env(_THINGSPEAK_URL_ENV, "https://api.thingspeak.com").rstrip("/"),
        channel_id=channel_id,
        read_api_key=_read_optional_env(_READ_KEY_ENV),
        vital_channel_id=_read_optional_env(_CHANNEL_ID_2_ENV),
        vital_read_api_key=_read_optional_env(_READ_KEY_2_ENV),
        pump_channel_id=_read_optional_env(_PUMP_CHANNEL_ENV, channel_id),
        write_api_key=_read_optional_env(_WRITE_KEY_ENV),
        pump_field=_read_int(_PUMP_FIELD_ENV, 8, 1, 8),
        ml_service_url=_read_str_env(_ML_URL_ENV, "http://localhost:8000").rstrip("/"),
        gemini_api_key=_read_optional_env(_GEMINI_KEY_ENV, _read_optional_env(_GOOGLE_KEY_ENV)),
        gemini_model=_read_str_env(_GEMINI_MODEL_ENV, "models/gemini-2.0-flash-exp"),
        transcription_model=_read_str_env(_TRANSCRIPTION_MODEL_ENV, "models/gemini-2.0-flash"),
        realtime_model=_read_str_env(
            _REALTIME_MODEL_ENV, "models/gemini-2.5-flash-native-audio-preview-12-2025"
        ),
        google_project_id=_read_optional_env(_GOOGLE_PROJECT_ENV),
        twilio_account_sid=_read_optional_env(_TWILIO_SID_ENV),
        twilio_auth_token=_read_optional_env(_TWILIO_TOKEN_ENV),
        twilio_from_number=_read_optional_env(_TWILIO_FROM_ENV),
        twilio_to_number=_read_optional_env(_TWILIO_TO_ENV),
        opencage_api_key=_read_optional_env(_OPENCAGE_KEY_ENV),
        omnidim_base_url=_read_str_env(_OMNIDIM_URL_ENV, "https://backend.omnidim.io").rstrip("/"),
        omnidim_api_key=_read_optional_env(_OMNIDIM_KEY_ENV),
        omnidim_agent_id=_read_optional_env(_OMNIDIM_AGENT_ENV),
        omnidim_from_number_id=_read_optional_env(_OMNIDIM_FROM_ENV),
        farm_latitude=_read_float(_LATITUDE_ENV, 22.5626),
        farm_longitude=_read_float(_LONGITUDE_ENV, 88.363),
        farm_location_name=_read_str_env(_LOCATION_NAME_ENV, "Default Location"),
        http_timeout=_read_float(_HTTP_TIMEOUT_ENV, 10.0, positive=True),
        log_level=_read_log_level("INFO"),
        host=_read_str_env(_HOST_ENV, "127.0.0.1"),
        port=_read_int(_PORT_ENV, 3000, 1, 65535),
    )
