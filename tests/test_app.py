from __future__ import annotations

import asyncio
import functools
import json
from contextlib import ExitStack
from typing import Callable, Dict, Iterator, List, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.api import RATE_LIMIT_WARNING, RECOMMENDATION_ERROR
from app.main import create_app, run
from services.container import FarmServices, build_services
from services.realtime import RealtimeSession
from services.thingspeak import INVALID_PUMP_STATE
from tests.helpers import feed, make_settings, mock_client

THINGSPEAK = "api.thingspeak.test"
FEEDS_PATH = f"{THINGSPEAK}/channels/1001/feeds.json"
PUMP_LAST_PATH = f"{THINGSPEAK}/channels/1001/fields/8/last.json"
PUMP_WRITE_PATH = f"{THINGSPEAK}/update.json"
GEMINI_PATH = "generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash-exp:generateContent"
WEATHER_PATH = "api.open-meteo.com/v1/forecast"
TWILIO_PATH = "api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"

FEEDS = {
    "feeds": [
        feed(1, "2024-05-01T10:00:00Z", field1="68", field2="28", field3="60", field5="30", field6="30", field7="30"),
        feed(2, "2024-05-01T10:10:00Z", field1="85", field2="29", field3="62", field5="60", field6="30", field7="30"),
    ]
}
WEATHER = {
    "current_weather": {"temperature": 31.0, "weathercode": 1},
    "hourly": {"relative_humidity_2m": [64.0] * 24},
}


class Upstream:
    """Routes mocked upstream calls by method and host/path."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, url: str, status_code: int = 200, **kwargs) -> "Upstream":
        self.routes[(method, url)] = lambda request: httpx.Response(status_code, **kwargs)
        return self

    def calls(self, url: str) -> List[httpx.Request]:
        return [request for request in self.requests if f"{request.url.host}{request.url.path}" == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, f"{request.url.host}{request.url.path}")
        if key not in self.routes:
            raise AssertionError(f"Unexpected upstream call: {key}")
        return self.routes[key](request)


@pytest.fixture
def gateway(monkeypatch) -> Iterator[Callable[..., Tuple[TestClient, FarmServices]]]:
    with ExitStack() as stack:

        def start(upstream: Upstream, **overrides) -> Tuple[TestClient, FarmServices]:
            services = build_services(make_settings(**overrides), mock_client(upstream))

            def build_test_services() -> FarmServices:
                return services

            build_test_services.cache_clear = lambda: None  # type: ignore[attr-defined]
            for module in ("app.main", "app.api", "app.web"):
                monkeypatch.setattr(f"{module}.build_default_services", build_test_services)

            client = stack.enter_context(TestClient(create_app()))
            return client, services

        yield start


def test_health_endpoints(gateway) -> None:
    client, _ = gateway(Upstream())

    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").json()["status"] == "ok"


def test_unknown_route_uses_error_envelope(gateway) -> None:
    client, _ = gateway(Upstream())

    response = client.get("/api/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_lifespan_closes_shared_http_client(monkeypatch) -> None:
    services = build_services(make_settings(), mock_client(Upstream()))
    cleared: List[bool] = []

    def build_test_services() -> FarmServices:
        return services

    build_test_services.cache_clear = lambda: cleared.append(True)  # type: ignore[attr-defined]
    monkeypatch.setattr("app.main.build_default_services", build_test_services)

    with TestClient(create_app()):
        assert services.http.is_closed is False

    assert services.http.is_closed is True
    assert cleared == [True]


def test_sensor_overview(gateway) -> None:
    upstream = Upstream().on("GET", FEEDS_PATH, json=FEEDS)
    client, _ = gateway(upstream)

    response = client.get("/api/sensors", params={"range": "7d"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["range"] == "7d"
    assert payload["current"]["soilMoisture"] == 85.0
    assert payload["trend"] == {"change": 25.0, "increasing": True}
    assert payload["npk"]["average"] == 40.0
    assert payload["npk"]["trend"] == {"change": 33.3, "increasing": True}
    assert len(payload["history"]) == 2
    assert payload["aggregates"]["rowCount"] == 2
    assert payload["aggregates"]["metrics"]["soil_moisture"]["meanValue"] == 76.5
    assert "168" in [request.url.params["results"] for request in upstream.calls(FEEDS_PATH)]


def test_latest_reading_missing_is_404(gateway) -> None:
    client, _ = gateway(Upstream().on("GET", FEEDS_PATH, json={"feeds": []}))

    response = client.get("/api/sensors/latest")

    assert response.status_code == 404
    assert response.json() == {"error": "No sensor data available"}


def test_thingspeak_failure_is_502(gateway) -> None:
    client, _ = gateway(Upstream().on("GET", FEEDS_PATH, status_code=400, text="bad key"))

    response = client.get("/api/sensors")

    assert response.status_code == 502
    assert response.json() == {"error": "ThingSpeak API error: 400 - bad key"}


def test_missing_configuration_is_500(gateway) -> None:
    client, _ = gateway(Upstream(), vital_channel_id=None)

    response = client.get("/api/sensors/vital-stats")

    assert response.status_code == 500
    assert "THINGSPEAK_CHANNEL_ID_2" in response.json()["error"]


def test_pump_on_returns_entry_id(gateway) -> None:
    upstream = Upstream().on("POST", PUMP_WRITE_PATH, text="17")
    client, _ = gateway(upstream)

    response = client.post("/api/pump", json={"action": "ON"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "state": "on", "entryId": "17"}
    assert upstream.calls(PUMP_WRITE_PATH)[0].url.params["field8"] == "1"


def test_pump_alias_accepts_numeric_value(gateway) -> None:
    client, _ = gateway(Upstream().on("POST", PUMP_WRITE_PATH, text="18"))

    response = client.post("/api/thingspeak/pump", json={"value": 0})

    assert response.json()["state"] == "off"


@pytest.mark.parametrize("body", [{"action": "sideways"}, {}, None])
def test_pump_rejects_invalid_action(gateway, body) -> None:
    client, _ = gateway(Upstream())

    if body is None:
        response = client.post("/api/pump", content=b"not json")
    else:
        response = client.post("/api/pump", json=body)

    assert response.status_code == 400
    assert response.json() == {"error": INVALID_PUMP_STATE}


def test_pump_rate_limit_is_429_with_state(gateway) -> None:
    client, _ = gateway(Upstream().on("POST", PUMP_WRITE_PATH, text="0"))

    response = client.post("/api/pump", json={"state": "off"})

    assert response.status_code == 429
    assert response.json() == {"success": False, "warning": RATE_LIMIT_WARNING, "state": "off"}


def test_pump_status(gateway) -> None:
    upstream = Upstream().on(
        "GET", PUMP_LAST_PATH, json={"created_at": "2024-05-01T10:00:00Z", "field8": "1"}
    )
    client, _ = gateway(upstream)

    response = client.get("/api/pump")

    assert response.json() == {
        "success": True,
        "state": "on",
        "value": 1,
        "lastUpdate": "2024-05-01T10:00:00Z",
    }


def test_alert_check_sends_sms(gateway) -> None:
    upstream = Upstream().on("POST", TWILIO_PATH, status_code=201, json={"sid": "SM1"})
    client, _ = gateway(upstream)

    response = client.post("/api/alerts", json={"soilMoisture": 10, "temperature": 25})

    assert response.status_code == 200
    assert response.json()["alertsSent"] == 1
    assert len(upstream.calls(TWILIO_PATH)) == 1


def test_alert_validation_error_is_400(gateway) -> None:
    client, _ = gateway(Upstream())

    response = client.post("/api/alerts", json={"soilMoisture": "wet"})

    assert response.status_code == 400
    assert response.json()["error"].startswith("soilMoisture:")


def test_recommendation_rejects_non_numeric_values(gateway) -> None:
    client, _ = gateway(Upstream())

    response = client.post(
        "/api/ml/agriculture/recommendation",
        json={"n": "10", "p": 20, "k": 30, "temperature": 25, "humidity": 60},
    )

    assert response.status_code == 400
    assert response.json() == {"error": RECOMMENDATION_ERROR}


def test_recommendation_proxies_and_passes_status_through(gateway) -> None:
    ok = Upstream().on("POST", "ml.test/agriculture/recommendation", json={"action": "Monitor"})
    client, _ = gateway(ok)

    response = client.post(
        "/api/ml/agriculture/recommendation",
        json={"n": 10, "p": 20, "k": 30, "temperature": 25.5, "humidity": 60},
    )

    assert response.json() == {"action": "Monitor"}
    sent = json.loads(ok.calls("ml.test/agriculture/recommendation")[0].content)
    assert sent["soil_moisture"] is None

    failing = Upstream().on("POST", "ml.test/agriculture/recommendation", status_code=422, text="bad")
    client, _ = gateway(failing)

    response = client.post(
        "/api/ml/agriculture/recommendation",
        json={"n": 10, "p": 20, "k": 30, "temperature": 25, "humidity": 60},
    )
    assert response.status_code == 422
    assert response.json() == {"error": "ML service error: bad"}


def test_recommendation_for_latest_adds_urgency(gateway) -> None:
    upstream = (
        Upstream()
        .on("GET", FEEDS_PATH, json=FEEDS)
        .on("POST", "ml.test/agriculture/recommendation", json={"action": "Irrigate", "confidence": 0.9})
    )
    client, _ = gateway(upstream)

    response = client.post("/api/ml/agriculture/recommendation/latest")

    assert response.json() == {"action": "Irrigate", "confidence": 0.9, "urgency": "urgent"}
    sent = json.loads(upstream.calls("ml.test/agriculture/recommendation")[0].content)
    assert sent["soil_moisture"] == 85.0


def test_hsi_upload_requires_file(gateway) -> None:
    client, _ = gateway(Upstream())

    response = client.post("/api/ml/hsi/upload-map", data={"model": "ssun"})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing file"}


def test_hsi_upload_forwards_file_and_options(gateway) -> None:
    upstream = Upstream().on("POST", "ml.test/hsi/upload-map", json={"map": "ok"})
    client, _ = gateway(upstream)

    response = client.post(
        "/api/ml/hsi/upload-map",
        files={"file": ("cube.mat", b"cube-bytes", "application/octet-stream")},
        data={"w": "5"},
    )

    assert response.json() == {"map": "ok"}
    body = upstream.calls("ml.test/hsi/upload-map")[0].content
    assert b"cube-bytes" in body
    assert b'name="w"' in body
    assert b"ssun" in body


def test_translate_requires_text_and_target(gateway) -> None:
    client, _ = gateway(Upstream())

    response = client.post("/api/translate", json={"text": "Hello"})

    assert response.status_code == 400
    assert response.json() == {"error": "Text and targetLang are required"}


def test_translate(gateway) -> None:
    upstream = Upstream().on(
        "GET", "translate.googleapis.com/translate_a/single", json=[[["নমস্কার", "Hello"]]]
    )
    client, _ = gateway(upstream)

    response = client.post("/api/translate", json={"text": "Hello", "targetLang": "bn"})

    assert response.json() == {"translatedText": "নমস্কার"}


def test_tts_requires_text_and_language(gateway) -> None:
    client, _ = gateway(Upstream())

    response = client.post("/api/tts", json={"text": "Hello"})

    assert response.status_code == 400
    assert response.json() == {"error": "Text and language are required"}


def test_language_detection(gateway) -> None:
    client, _ = gateway(Upstream())

    assert client.get("/api/language/detect", params={"text": "hindi please"}).json() == {"language": "hi"}


def test_language_prompts(gateway) -> None:
    client, _ = gateway(Upstream())

    prompts = client.get("/api/language/prompts").json()

    assert [prompt["code"] for prompt in prompts] == ["en", "bn", "hi", "kn", "ta", "te"]
    assert prompts[0]["text"] == "Please choose by speaking in your preferred language."


def test_omnidim_call(gateway) -> None:
    upstream = Upstream().on("POST", "omnidim.test/api/v1/calls/dispatch", json={"call_id": 7})
    client, _ = gateway(upstream)

    response = client.post("/api/omnidim/call", json={"phoneNumber": "+15551234567"})

    assert response.json() == {"success": True, "data": {"call_id": 7}}
    request = upstream.calls("omnidim.test/api/v1/calls/dispatch")[0]
    assert request.headers["Authorization"] == "Bearer OMNIKEY"
    assert json.loads(request.content) == {
        "agent_id": 42,
        "to_number": "+15551234567",
        "call_context": {"source": "dashboard", "intent": "test_call"},
    }


def test_omnidim_call_errors(gateway) -> None:
    client, _ = gateway(Upstream())

    missing_number = client.post("/api/omnidim/call", json={})
    assert missing_number.status_code == 400
    assert missing_number.json() == {"error": "Missing destination phone number"}

    client, _ = gateway(Upstream(), omnidim_api_key=None)
    unconfigured = client.post("/api/omnidim/call", json={"to": "+15551234567"})
    assert unconfigured.status_code == 500
    assert unconfigured.json() == {"error": "Missing Omnidim API configuration"}


def test_diagnostics_without_key_still_answers_200(gateway) -> None:
    client, _ = gateway(Upstream(), gemini_api_key=None)

    response = client.get("/api/diagnostics/balaram-ai")

    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is False
    assert payload["lookedFor"] == ["GEMINI_API_KEY", "GOOGLE_API_KEY"]


def test_assistant_chat_grounds_prompt_and_attaches_chart(gateway) -> None:
    reply = {"candidates": [{"content": {"parts": [{"text": "Your soil is quite wet, hold off watering."}]}}]}
    upstream = (
        Upstream()
        .on("GET", FEEDS_PATH, json=FEEDS)
        .on("GET", WEATHER_PATH, json=WEATHER)
        .on("POST", GEMINI_PATH, json=reply)
    )
    client, _ = gateway(upstream)

    response = client.post("/api/assistant/chat", json={"message": "How is my soil moisture?"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["reply"] == "Your soil is quite wet, hold off watering."
    assert payload["chart"]["topic"] == "soil_moisture"
    assert payload["chart"]["chart_data"]["values"][-1] == 85.0

    chat_request, analysis_request = upstream.calls(GEMINI_PATH)
    prompt = json.loads(chat_request.content)["contents"][0]["parts"][0]["text"]
    assert "AGRICULTURAL KNOWLEDGE CONTEXT:" in prompt
    assert "Location: Test Farm" in prompt
    assert "ALERT: High soil moisture detected. Check drainage." in prompt
    assert "SENSOR_CONTEXT_JSON:" in prompt
    assert "out of date" not in prompt
    assert "trend analysis assistant" in json.loads(analysis_request.content)["contents"][0]["parts"][0]["text"]


def test_assistant_chat_requires_message(gateway) -> None:
    client, _ = gateway(Upstream())

    response = client.post("/api/assistant/chat", json={"message": ""})

    assert response.status_code == 400


def test_assistant_analyze_skips_casual_turns(gateway) -> None:
    upstream = Upstream().on("GET", FEEDS_PATH, json=FEEDS).on("GET", WEATHER_PATH, json=WEATHER)
    client, _ = gateway(upstream)

    response = client.post("/api/assistant/analyze", json={"query": "hello", "response": "Hi!"})

    assert response.json() == {"skip": True, "needs_visual": False}
    assert upstream.calls(GEMINI_PATH) == []


def test_assistant_socket_without_key_reports_error(gateway) -> None:
    client, _ = gateway(Upstream(), gemini_api_key=None)

    with client.websocket_connect("/ws/assistant") as websocket:
        assert websocket.receive_json() == {
            "type": "error",
            "message": "Missing API key for Balaram AI (Gemini).",
        }
        with pytest.raises(WebSocketDisconnect) as excinfo:
            websocket.receive_json()

    assert excinfo.value.code == 1011


def test_dashboard_renders_readings_alerts_and_pump(gateway) -> None:
    upstream = (
        Upstream()
        .on("GET", FEEDS_PATH, json=FEEDS)
        .on("GET", PUMP_LAST_PATH, json={"created_at": "2024-05-01T10:00:00Z", "field8": "1"})
        .on("GET", WEATHER_PATH, json=WEATHER)
    )
    client, _ = gateway(upstream)

    response = client.get("/ui")

    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]
    assert "Test Farm" in response.text
    assert "85.0%" in response.text
    assert "CRITICAL: Soil moisture is too high" in response.text
    assert "<strong>ON</strong>" in response.text
    assert "31.0 °C" in response.text


def test_dashboard_shows_upstream_errors_inline(gateway) -> None:
    upstream = (
        Upstream()
        .on("GET", FEEDS_PATH, status_code=500, text="down")
        .on("GET", PUMP_LAST_PATH, json={"field8": "0"})
        .on("GET", WEATHER_PATH, status_code=503)
    )
    client, _ = gateway(upstream)

    response = client.get("/ui")

    assert response.status_code == 200
    assert "ThingSpeak API error: 500 - down" in response.text
    assert "Open-Meteo API error: 503" in response.text
    assert "Unavailable without sensor data." in response.text
    assert "<strong>OFF</strong>" in response.text


FORECAST = {
    "utc_offset_seconds": 0,
    "current_weather": {"temperature": 30.4, "weathercode": 2},
    "hourly": {
        "relative_humidity_2m": [50.0] * 24,
        "wind_speed_10m": [10.0] * 24,
        "pressure_msl": [1008.0] * 24,
        "visibility": [24000.0] * 24,
        "precipitation": [0.0] * 24,
    },
    "daily": {
        "temperature_2m_max": [33.0, 34.0, 32.0, 31.0, 30.0, 29.0],
        "temperature_2m_min": [25.0, 26.0, 24.0, 23.0, 22.0, 21.0],
        "precipitation_probability_max": [10, 20, 80, 0, 5, 0],
        "precipitation_sum": [0.0, 0.0, 12.0, 0.0, 0.0, 0.0],
        "weather_code": [0, 1, 63, 3, 2, 0],
    },
}
OPENCAGE_PATH = "api.opencagedata.com/geocode/v1/json"


def test_weather_route_uses_farm_location_by_default(gateway) -> None:
    upstream = Upstream().on("GET", WEATHER_PATH, json=FORECAST)
    client, _ = gateway(upstream)

    response = client.get("/api/weather")

    assert response.status_code == 200
    payload = response.json()
    assert payload["current"]["condition"] == "Partly cloudy"
    assert payload["current"]["windSpeed"] == 10.0
    assert [day["day"] for day in payload["forecast"]][:2] == ["Today", "Tomorrow"]
    assert payload["forecast"][2]["icon"] == "CloudRain"
    assert len(payload["evapotranspiration"]["forecast"]) == 5
    params = upstream.calls(WEATHER_PATH)[0].url.params
    assert params["latitude"] == "22.5626"
    assert params["longitude"] == "88.363"


def test_evapotranspiration_route(gateway) -> None:
    upstream = Upstream().on("GET", WEATHER_PATH, json=FORECAST)
    client, _ = gateway(upstream)

    response = client.get("/api/weather/evapotranspiration", params={"lat": 12.97, "lon": 77.59})

    assert response.status_code == 200
    payload = response.json()
    assert payload["current"]["pet"] >= 0
    assert "soilMoisture" in payload["current"]
    assert len(payload["forecast"]) == 5
    assert upstream.calls(WEATHER_PATH)[0].url.params["latitude"] == "12.97"


def test_location_route_names_nearby_place(gateway) -> None:
    result = {
        "results": [
            {
                "geometry": {"lat": 22.563, "lng": 88.364},
                "components": {"city": "Kolkata", "state": "West Bengal", "country": "India"},
            }
        ]
    }
    upstream = Upstream().on("GET", OPENCAGE_PATH, json=result)
    client, _ = gateway(upstream)

    response = client.get("/api/location", params={"lat": 22.5626, "lon": 88.363})

    assert response.json() == {
        "latitude": 22.5626,
        "longitude": 88.363,
        "locationName": "Kolkata, West Bengal, India",
    }
    assert upstream.calls(OPENCAGE_PATH)[0].url.params["key"] == "OCKEY"


def test_hsi_lstm_map_passes_json_through(gateway) -> None:
    upstream = Upstream().on("POST", "ml.test/hsi/lstm-map", json={"map": [[1, 2]]})
    client, _ = gateway(upstream)

    response = client.post("/api/ml/hsi/lstm-map", json={"time_step": 3})

    assert response.json() == {"map": [[1, 2]]}
    assert json.loads(upstream.calls("ml.test/hsi/lstm-map")[0].content) == {"time_step": 3}


def test_hsi_lstm_map_wraps_non_json_and_maps_errors(gateway) -> None:
    client, _ = gateway(Upstream().on("POST", "ml.test/hsi/lstm-map", text="plain map"))

    assert client.post("/api/ml/hsi/lstm-map", json={}).json() == {"raw": "plain map"}

    client, _ = gateway(Upstream().on("POST", "ml.test/hsi/lstm-map", status_code=500, text="cuda oom"))
    failed = client.post("/api/ml/hsi/lstm-map", json={})

    assert failed.status_code == 502
    assert failed.json() == {"error": "ML service error 500: cuda oom"}


def test_npk_ranges_query_selects_endpoint(gateway) -> None:
    upstream = (
        Upstream()
        .on("GET", "ml.test/agriculture/npk-ranges", json={"n": [0, 140]})
        .on("GET", "ml.test/agriculture/statistics", json={"records": 2200})
    )
    client, _ = gateway(upstream)

    ranges = client.get("/api/ml/agriculture/recommendation", params={"type": "npk-ranges"})
    stats = client.get("/api/ml/agriculture/recommendation")

    assert ranges.json() == {"n": [0, 140]}
    assert stats.json() == {"records": 2200}


def test_tts_returns_data_uri(gateway, monkeypatch) -> None:
    client, services = gateway(Upstream())
    rendered: List[Tuple[str, str]] = []

    def renderer(text: str, lang: str) -> bytes:
        rendered.append((text, lang))
        return b"ID3mp3"

    monkeypatch.setattr(services.language, "_render", renderer)

    response = client.post("/api/tts", json={"text": "Namaste", "lang": "hi"})

    assert response.json() == {"audioContent": "data:audio/mpeg;base64,SUQzbXAz"}
    assert rendered == [("Namaste", "hi")]


def test_tts_rejects_unsupported_language(gateway) -> None:
    client, _ = gateway(Upstream())

    response = client.post("/api/tts", json={"text": "Hello", "lang": "xx-unknown"})

    assert response.status_code == 400
    assert "Language not supported" in response.json()["error"]


def test_assistant_chat_forwards_attachment(gateway) -> None:
    reply = {"candidates": [{"content": {"parts": [{"text": "The leaf looks healthy."}]}}]}
    upstream = (
        Upstream()
        .on("GET", FEEDS_PATH, json=FEEDS)
        .on("GET", WEATHER_PATH, json=WEATHER)
        .on("POST", GEMINI_PATH, json=reply)
    )
    client, _ = gateway(upstream)

    response = client.post(
        "/api/assistant/chat",
        json={"message": "Is this leaf healthy?", "attachment": {"mimeType": "image/png", "data": "cG5n"}},
    )

    assert response.status_code == 200
    assert response.json()["reply"] == "The leaf looks healthy."
    parts = json.loads(upstream.calls(GEMINI_PATH)[0].content)["contents"][0]["parts"]
    assert parts[1] == {"inlineData": {"mimeType": "image/png", "data": "cG5n"}}


def test_assistant_chat_rejects_undecodable_attachment(gateway) -> None:
    client, _ = gateway(Upstream())

    response = client.post(
        "/api/assistant/chat",
        json={"message": "Is this leaf healthy?", "attachment": {"mimeType": "image/png", "data": "***"}},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Attachment data must be base64"}


class LiveSocket:
    """Upstream realtime socket that answers once the browser has sent audio."""

    def __init__(self) -> None:
        self.sent: List[dict] = []
        self._media: asyncio.Event | None = None

    async def __aenter__(self) -> "LiveSocket":
        self._media = asyncio.Event()
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    async def send(self, data: str) -> None:
        frame = json.loads(data)
        self.sent.append(frame)
        if "realtime_input" in frame:
            self._media.set()

    async def close(self) -> None:
        return None

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        yield json.dumps({"setupComplete": {}})
        await self._media.wait()
        yield json.dumps({"serverContent": {"modelTurn": {"parts": [{"text": "Soil looks fine."}]}}})


def test_assistant_socket_relays_media_and_events(gateway, monkeypatch) -> None:
    socket = LiveSocket()
    urls: List[str] = []

    def connector(url: str) -> LiveSocket:
        urls.append(url)
        return socket

    monkeypatch.setattr("app.api.RealtimeSession", functools.partial(RealtimeSession, connector=connector))
    upstream = Upstream().on("GET", FEEDS_PATH, json=FEEDS).on("GET", WEATHER_PATH, json=WEATHER)
    client, _ = gateway(upstream)

    with client.websocket_connect("/ws/assistant") as websocket:
        assert websocket.receive_json() == {"type": "setup_complete"}
        websocket.send_text("not json")
        websocket.send_json({"type": "interrupt"})
        websocket.send_json({"type": "media", "mime_type": "audio/pcm;rate=16000", "data": "AAAA"})
        assert websocket.receive_json() == {"type": "text", "text": "Soil looks fine."}
        with pytest.raises(WebSocketDisconnect) as excinfo:
            websocket.receive_json()

    assert excinfo.value.code == 1000
    assert urls[0].endswith("?key=AIzaTESTKEY123456")
    setup = socket.sent[0]["setup"]
    assert setup["model"] == "models/gemini-realtime-test"
    assert "Location --> Test Farm" in setup["system_instruction"]["parts"][0]["text"]
    assert socket.sent[1] == {
        "realtime_input": {"media_chunks": [{"mime_type": "audio/pcm;rate=16000", "data": "AAAA"}]}
    }


def test_run_serves_app_with_configured_host_and_port(monkeypatch) -> None:
    calls: List[Tuple[str, dict]] = []
    monkeypatch.setenv("GATEWAY_HOST", "0.0.0.0")
    monkeypatch.setenv("GATEWAY_PORT", "8081")
    monkeypatch.setattr("app.main.uvicorn.run", lambda target, **kwargs: calls.append((target, kwargs)))

    run()

    assert calls == [("app.main:app", {"host": "0.0.0.0", "port": 8081, "log_config": None})]


def test_openapi_documents_error_envelope(gateway) -> None:
    client, _ = gateway(Upstream())

    schema = client.get("/openapi.json").json()

    assert schema["components"]["schemas"]["ErrorResponse"]["required"] == ["error"]
    responses = schema["paths"]["/api/pump"]["post"]["responses"]
    assert responses["502"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
