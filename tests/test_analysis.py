from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from services.analysis import (
    FALLBACK_LABELS,
    SKIPPED,
    ChartAnalyzer,
    analysis_prompt,
    extract_topic,
    fallback_chart,
    parse_chart,
    should_chart,
    strip_fences,
)
from services.gemini import GeminiClient
from services.sensor_context import SensorContext
from tests.helpers import mock_client

CHART = {
    "title": "Moisture",
    "summary": "Soil is drying out",
    "labels": ["Mon", "Tue", "Wed"],
    "values": [55, 48, 41],
    "data_label": "Moisture",
    "y_label": "%",
    "chart_title": "Soil moisture this week",
    "insights": ["Falling"],
    "chart_type": "bar",
}


def _analyzer(model_text: str | None = None, status: int = 200, seen: list | None = None) -> ChartAnalyzer:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if status != 200:
            return httpx.Response(status, text="unavailable")
        return httpx.Response(
            200, json={"candidates": [{"content": {"parts": [{"text": model_text}]}}]}
        )

    return ChartAnalyzer(GeminiClient(mock_client(handler), "AIzaTESTKEY123456"), "models/test")


@pytest.mark.parametrize(
    ("query", "response", "expected"),
    [
        ("How is the soil moisture?", "", True),
        ("hello", "Hi there! How can I help?", False),
        ("How much should I irrigate?", "Apply about 25 mm today.", True),
        ("Show me a chart of the yield", "Sure.", True),
        ("thanks", "Happy to help with your farm", False),
    ],
)
def test_should_chart(query: str, response: str, expected: bool) -> None:
    assert should_chart(query, response) is expected


def test_should_chart_from_grounding_numbers() -> None:
    results = {"groundingSupports": [{"segment": {"text": "Wheat MSP is 2275 per quintal"}}]}

    assert should_chart("hello", "ok", results) is True
    assert should_chart("hello", "ok", {"groundingSupports": [{"segment": {"text": "none"}}]}) is False


@pytest.mark.parametrize(
    ("query", "topic"),
    [
        ("how much water", "soil_moisture"),
        ("temp today", "temperature"),
        ("humidity levels", "humidity"),
        ("potassium dose", "npk"),
        ("weather tomorrow", "weather"),
        ("plant spacing", "crop_growth"),
        ("hello", "general"),
    ],
)
def test_extract_topic(query: str, topic: str) -> None:
    assert extract_topic(query) == topic


def test_fallback_chart_is_deterministic() -> None:
    first = fallback_chart("soil_moisture")
    second = fallback_chart("soil_moisture")

    assert first == second
    assert first.chart_data.labels == FALLBACK_LABELS
    assert first.chart_data.values == [44.0, 47.0, 46.0, 51.0, 49.0, 52.0, 50.0]
    assert first.chart_data.title == "SOIL MOISTURE Trend"
    assert first.chart_data.chart_title == "7-Day SOIL MOISTURE Analysis"
    assert first.chart_data.insights == ["Average soil moisture: 48", "Trend appears increasing"]


def test_fallback_chart_centres_on_current_reading_and_clamps() -> None:
    context = SensorContext(latitude=0.0, longitude=0.0, location_name="x", soil_moisture=12.0)

    chart = fallback_chart("soil_moisture", context).chart_data

    assert chart.values[-1] == 12.0
    assert min(chart.values) == 10.0


def test_fallback_chart_generic_topic() -> None:
    chart = fallback_chart("crop_growth").chart_data

    assert chart.y_label == "units"
    assert chart.values[0] == 38.0


def test_strip_fences_and_parse_chart() -> None:
    assert strip_fences('```json\n{"skip": true}\n```') == '{"skip": true}'
    assert parse_chart('```\n{"a": 1}\n```') == {"a": 1}
    assert parse_chart("not json") is None
    assert parse_chart("[1, 2]") is None


def test_analysis_prompt_includes_sensor_values_and_search() -> None:
    context = SensorContext(latitude=0.0, longitude=0.0, location_name="Plot 7", temperature=29.0, humidity=61.0)
    results = {"groundingSupports": [{"segment": {"text": "Rain expected"}}]}

    prompt = analysis_prompt("q", "r", context, results)

    assert "- Location: Plot 7" in prompt
    assert "- Temperature: 29.0°C" in prompt
    assert "- Humidity: 61.0%" in prompt
    assert "GOOGLE SEARCH RESULTS:\n1. Rain expected" in prompt


def test_analyze_skips_casual_turns_without_calling_model() -> None:
    seen: list = []

    result = asyncio.run(_analyzer(json.dumps(CHART), seen=seen).analyze("hello", "Hi!"))

    assert result == SKIPPED
    assert seen == []


def test_analyze_returns_model_chart() -> None:
    result = asyncio.run(_analyzer(json.dumps(CHART)).analyze("soil moisture trend?", "Dropping"))

    assert result.skip is False
    assert result.needs_visual is True
    assert result.topic == "soil_moisture"
    assert result.chart_data.values == [55.0, 48.0, 41.0]
    assert result.chart_data.chart_type.value == "bar"


def test_analyze_honours_model_skip() -> None:
    result = asyncio.run(_analyzer('{"skip": true}').analyze("price of rice?", "Rs 2000"))

    assert result == SKIPPED


@pytest.mark.parametrize("model_text", ["I cannot chart this", '{"title": "missing values"}'])
def test_analyze_falls_back_on_unusable_output(model_text: str) -> None:
    result = asyncio.run(_analyzer(model_text).analyze("npk levels?", "N is 40"))

    assert result == fallback_chart("npk")


def test_analyze_skips_when_model_fails() -> None:
    result = asyncio.run(_analyzer(status=500).analyze("temperature trend", "30°C"))

    assert result == SKIPPED
