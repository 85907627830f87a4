"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt
from pydantic.alias_generators import to_camel

StrictNumber = Union[StrictInt, StrictFloat]


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase input and serializes as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    error: str


class PumpState(str, Enum):
    on = "on"
    off = "off"


class Reading(CamelModel):
    """A sensor reading as exposed to the dashboard."""

    timestamp: datetime
    soil_moisture: float
    temperature: float
    humidity: float
    nitrogen: float
    phosphorus: float
    potassium: float


class VitalStats(CamelModel):
    timestamp: datetime
    red: float
    nir: float
    ndvi: float
    ratio: float
    chlorophyll: float
    nitrogen: float


class TrendModel(CamelModel):
    change: float = Field(..., ge=0)
    increasing: bool


class MetricAggregate(CamelModel):
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    mean_value: Optional[float] = None


class Aggregates(CamelModel):
    """Aggregate metrics computed over the requested window."""

    row_count: int = Field(..., ge=0)
    metrics: Dict[str, MetricAggregate] = Field(default_factory=dict)


class NpkSummary(CamelModel):
    nitrogen: float
    phosphorus: float
    potassium: float
    average: float
    trend: TrendModel


class SensorOverview(CamelModel):
    range: str
    current: Reading
    trend: TrendModel
    npk: NpkSummary
    history: List[Reading]
    aggregates: Aggregates


class PumpWriteResponse(CamelModel):
    success: bool
    state: PumpState
    entry_id: Optional[str] = None
    warning: Optional[str] = None


class PumpStatusResponse(CamelModel):
    success: bool = True
    state: PumpState
    value: int
    last_update: Optional[str] = None


class AlertCheckRequest(CamelModel):
    soil_moisture: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    nitrogen: Optional[float] = None
    phosphorus: Optional[float] = None
    potassium: Optional[float] = None


class AlertCheckResponse(CamelModel):
    success: bool = True
    alerts_sent: int
    alerts: List[str] = Field(default_factory=list)


class RecommendationRequest(BaseModel):
    """Sensor values forwarded to the recommendation model; numbers only."""

    n: StrictNumber
    p: StrictNumber
    k: StrictNumber
    temperature: StrictNumber
    humidity: StrictNumber
    soil_moisture: Optional[StrictNumber] = None


class CurrentWeather(CamelModel):
    temperature: float
    condition: str
    humidity: float
    wind_speed: float
    pressure: float
    visibility: float
    feels_like: float


class ForecastDay(CamelModel):
    day: str
    high: int
    low: int
    condition: str
    icon: str
    precipitation: int


class EvapotranspirationPoint(CamelModel):
    date: Optional[str] = None
    pet: float
    aet: float
    evaporation: float
    soil_moisture: float


class Evapotranspiration(CamelModel):
    current: EvapotranspirationPoint
    forecast: List[EvapotranspirationPoint] = Field(default_factory=list)


class DetailedWeather(CamelModel):
    current: CurrentWeather
    forecast: List[ForecastDay]
    evapotranspiration: Optional[Evapotranspiration] = None


class LocationResponse(CamelModel):
    latitude: float
    longitude: float
    location_name: str


class TranslateRequest(CamelModel):
    text: Optional[str] = None
    target_lang: Optional[str] = None


class TranslateResponse(CamelModel):
    translated_text: str


class SpeechRequest(BaseModel):
    text: Optional[str] = None
    lang: Optional[str] = None


class SpeechResponse(CamelModel):
    audio_content: str


class LanguageDetection(BaseModel):
    language: Optional[str] = None


class LanguagePromptModel(BaseModel):
    code: str
    text: str


class CallRequest(BaseModel):
    to: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    call_context: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True)


class CallResponse(BaseModel):
    success: bool = True
    data: Any = None


class ChartType(str, Enum):
    line = "line"
    bar = "bar"
    area = "area"


class ChartData(BaseModel):
    """Chart payload rendered by the dashboard; keys stay snake_case."""

    title: str
    summary: str = ""
    labels: List[str]
    values: List[float]
    data_label: str = ""
    y_label: str = ""
    chart_title: str = ""
    insights: List[str] = Field(default_factory=list)
    chart_type: ChartType = ChartType.line


class AnalysisResult(BaseModel):
    skip: bool
    needs_visual: bool
    chart_data: Optional[ChartData] = None
    topic: Optional[str] = None


class AnalyzeRequest(CamelModel):
    query: str
    response: str = ""
    search_results: Optional[Dict[str, Any]] = None


class ChatAttachment(CamelModel):
    mime_type: str = Field(..., min_length=1)
    data: str = Field(..., min_length=1)


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    attachment: Optional[ChatAttachment] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_name: Optional[str] = Field(default=None, alias="locationName")

    model_config = ConfigDict(populate_by_name=True)


class ChatResponse(BaseModel):
    reply: str
    chart: Optional[AnalysisResult] = None


class DiagnosticCheck(BaseModel):
    name: str
    ok: bool
    status: Optional[int] = None
    error: Optional[str] = None
    hint: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    models: Optional[List[str]] = None


class DiagnosticsReport(CamelModel):
    ok: bool
    diagnosis: Optional[str] = None
    message: Optional[str] = None
    looked_for: Optional[List[str]] = None
    api_key_redacted: Optional[str] = None
    project_id: Optional[str] = None
    checks: List[DiagnosticCheck] = Field(default_factory=list)
