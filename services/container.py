"""Wiring of the upstream clients shared by the HTTP and WebSocket layers."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import httpx

from services.aggregator import Aggregator
from services.alerts import AlertService
from services.analysis import ChartAnalyzer
from services.gemini import ChatService, DiagnosticsService, GeminiClient, TranscriptionService
from services.geocoding import Geocoder
from services.language import LanguageService
from services.ml import MlServiceClient
from services.notifier import TwilioNotifier
from services.omnidim import OmnidimClient
from services.sensor_context import SensorContextBuilder
from services.thingspeak import PumpController, ThingSpeakClient
from services.upstream import build_http_client
from services.weather import WeatherClient
from settings import Settings, get_settings


@dataclass
class FarmServices:
    """Every collaborator a request handler may need, sharing one HTTP client."""

    settings: Settings
    http: httpx.AsyncClient
    thingspeak: ThingSpeakClient
    pump: PumpController
    alerts: AlertService
    ml: MlServiceClient
    weather: WeatherClient
    geocoder: Geocoder
    language: LanguageService
    omnidim: OmnidimClient
    gemini: GeminiClient
    chat: ChatService
    transcription: TranscriptionService
    diagnostics: DiagnosticsService
    analyzer: ChartAnalyzer
    context_builder: SensorContextBuilder

    async def aclose(self) -> None:
        await self.http.aclose()


def build_services(
    settings: Settings,
    http: Optional[httpx.AsyncClient] = None,
) -> FarmServices:
    http = http or build_http_client(settings)
    thingspeak = ThingSpeakClient(http, settings, Aggregator())
    weather = WeatherClient(http)
    geocoder = Geocoder(http, settings.opencage_api_key)
    gemini = GeminiClient(http, settings.gemini_api_key, settings.google_project_id)
    return FarmServices(
        settings=settings,
        http=http,
        thingspeak=thingspeak,
        pump=PumpController(http, settings),
        alerts=AlertService(TwilioNotifier(http, settings)),
        ml=MlServiceClient(http, settings),
        weather=weather,
        geocoder=geocoder,
        language=LanguageService(http),
        omnidim=OmnidimClient(http, settings),
        gemini=gemini,
        chat=ChatService(gemini, settings.gemini_model),
        transcription=TranscriptionService(gemini, settings.transcription_model),
        diagnostics=DiagnosticsService(gemini, settings.gemini_model),
        analyzer=ChartAnalyzer(gemini, settings.gemini_model),
        context_builder=SensorContextBuilder(weather, thingspeak, geocoder),
    )


@lru_cache
def build_default_services() -> FarmServices:
    """Factory that wires every client from environment settings."""
    return build_services(get_settings())
