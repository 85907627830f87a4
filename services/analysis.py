"""Decides when an assistant turn deserves a chart and builds one."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from app.schemas import AnalysisResult, ChartData, ChartType
from services.errors import GatewayError
from services.gemini import GeminiClient, extract_text
from services.sensor_context import SensorContext

logger = logging.getLogger(__name__)

# A query naming one of these always gets a chart.
TOPIC_KEYWORDS = ("moisture", "temperature", "npk", "search", "price", "trend", "data")

VISUAL_TRIGGERS = (
    "trend", "history", "historical", "past", "week", "month", "year",
    "over time", "change", "forecast", "prediction", "chart", "graph",
    "pattern", "comparison", "compare", "evolution", "development",
    "moisture", "temperature", "humidity", "npk", "nitrogen", "phosphorus", "potassium",
    "levels", "readings", "data", "measurements", "values", "sensor",
    "increase", "decrease", "rising", "falling", "stable", "fluctuating",
    "high", "low", "average", "maximum", "minimum",
    "price", "cost", "rate", "market", "sell", "buy", "profit", "loss",
    "search", "find", "lookup", "current", "latest", "recent",
    "yield", "harvest", "crop", "farm", "field", "soil", "plant",
)
_EXPLICIT_DATA_WORDS = ("trend", "chart", "data", "search")

_DIGITS = re.compile(r"\d")
_UNITS = re.compile(
    r"(%|ppm|°c|°f|kg|tons?|liters?|ml|cm|mm|inches?|feet|meters?|₹|rs\.?|rupees?|dollars?|\$)"
)
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

SKIPPED = AnalysisResult(skip=True, needs_visual=False)

FALLBACK_LABELS = ["6d ago", "5d ago", "4d ago", "3d ago", "2d ago", "1d ago", "Today"]
# Relative to today's value, oldest first.
_FALLBACK_OFFSETS = (-3.0, -1.5, -2.0, 0.5, -0.5, 1.0, 0.0)

# topic -> (default base, step, low clamp, high clamp, y label)
_FALLBACK_PROFILES = {
    "soil_moisture": (50.0, 2.0, 10.0, 90.0, "%"),
    "temperature": (25.0, 1.0, 15.0, 40.0, "°C"),
    "humidity": (60.0, 1.5, 30.0, 90.0, "%"),
    "npk": (50.0, 3.0, 20.0, 100.0, "ppm"),
}
_GENERIC_PROFILE = (50.0, 4.0, 0.0, 100.0, "units")


def _grounding_supports(search_results: Optional[Mapping[str, Any]]) -> List[Any]:
    if not isinstance(search_results, Mapping):
        return []
    supports = search_results.get("groundingSupports")
    return supports if isinstance(supports, list) else []


def _support_text(support: Any) -> str:
    if not isinstance(support, Mapping):
        return "Search result"
    segment = support.get("segment") or {}
    return segment.get("text") or support.get("title") or "Search result"


def should_chart(
    query: str,
    response: str,
    search_results: Optional[Mapping[str, Any]] = None,
) -> bool:
    """Whether a conversation turn carries data worth visualising."""
    query_lower = (query or "").lower()
    if any(keyword in query_lower for keyword in TOPIC_KEYWORDS):
        return True

    combined = f"{query_lower} {(response or '').lower()}"
    has_numbers = bool(_DIGITS.search(response or ""))
    has_units = bool(_UNITS.search(combined))
    has_keywords = any(trigger in combined for trigger in VISUAL_TRIGGERS)

    if has_numbers and (has_units or has_keywords):
        return True
    if has_keywords and any(word in combined for word in _EXPLICIT_DATA_WORDS):
        return True

    supports = _grounding_supports(search_results)
    return any(_DIGITS.search(_support_text(support)) for support in supports)


def extract_topic(query: str) -> str:
    text = (query or "").lower()
    if "moisture" in text or "water" in text:
        return "soil_moisture"
    if "temperature" in text or "temp" in text:
        return "temperature"
    if "humidity" in text:
        return "humidity"
    if any(word in text for word in ("npk", "nitrogen", "phosphorus", "potassium")):
        return "npk"
    if "weather" in text:
        return "weather"
    if "crop" in text or "plant" in text:
        return "crop_growth"
    return "general"


def _current_value(topic: str, context: Optional[SensorContext]) -> Optional[float]:
    if context is None:
        return None
    value = {
        "soil_moisture": context.soil_moisture,
        "temperature": context.temperature,
        "humidity": context.humidity,
        "npk": context.npk_average,
    }.get(topic)
    return value or None


def fallback_chart(topic: str, context: Optional[SensorContext] = None) -> AnalysisResult:
    """Seven-day chart derived from today's reading for ``topic``."""
    default_base, step, low, high, y_label = _FALLBACK_PROFILES.get(topic, _GENERIC_PROFILE)
    base = _current_value(topic, context) or default_base
    values = [round(max(low, min(high, base + offset * step)), 1) for offset in _FALLBACK_OFFSETS]

    name = topic.replace("_", " ")
    average = round(sum(values) / len(values))
    direction = "increasing" if values[-1] > values[0] else "decreasing"
    chart = ChartData(
        title=f"{name.upper()} Trend",
        summary=f"Recent {name} data based on your query",
        labels=list(FALLBACK_LABELS),
        values=values,
        data_label=name,
        y_label=y_label,
        chart_title=f"7-Day {name.upper()} Analysis",
        insights=[f"Average {name}: {average}", f"Trend appears {direction}"],
        chart_type=ChartType.line,
    )
    return AnalysisResult(skip=False, needs_visual=True, chart_data=chart, topic=topic)


def analysis_prompt(
    query: str,
    response: str,
    context: Optional[SensorContext],
    search_results: Optional[Mapping[str, Any]] = None,
) -> str:
    variables = context.gemini_variables() if context is not None else {}
    supports = _grounding_supports(search_results)
    search_block = ""
    if supports:
        lines = [f"{index}. {_support_text(support)}" for index, support in enumerate(supports, 1)]
        search_block = "\nGOOGLE SEARCH RESULTS:\n" + "\n".join(lines)

    return f"""You are a trend analysis assistant for agricultural data. Analyze this conversation and generate chart data if appropriate.

CONVERSATION:
User asked: "{query}"
Agent responded: "{response}"

CURRENT SENSOR DATA:
- Location: {variables.get("locationName", "Unknown")}
- Soil Moisture: {variables.get("soilMoisture", 0)}%
- Temperature: {variables.get("temperature", 0)}°C
- Humidity: {variables.get("humidity", 0)}%
- NPK Levels: N={variables.get("npkNitrogen", 0)}ppm, P={variables.get("npkPhosphorus", 0)}ppm, K={variables.get("npkPotassium", 0)}ppm{search_block}

TASK: Generate a visual chart for this conversation. If there are numbers, measurements or data mentioned, create a chart.

Rules:
- If Google Search results are provided, extract real numbers, dates, and trends from them
- If no search data, create realistic agricultural data that relates to the discussion
- Focus on making the data relevant to Indian agriculture and current sensor readings
- If the conversation is purely casual (like "hello", "how are you", "goodbye"), output {{"skip": true}}

OUTPUT FORMAT (pure JSON, no markdown):
{{
  "title": "Chart title",
  "summary": "Brief 1-sentence summary",
  "labels": ["Day1", "Day2", "Day3", "Day4", "Day5"],
  "values": [value1, value2, value3, value4, value5],
  "data_label": "Data type (e.g., Temperature, Moisture)",
  "y_label": "Unit (e.g., °C, %, ppm)",
  "chart_title": "Full descriptive title",
  "insights": ["Key insight 1", "Key insight 2"],
  "chart_type": "line"
}}

CRITICAL: Output ONLY raw JSON. No markdown, no backticks, no explanations."""


def strip_fences(text: str) -> str:
    return _FENCE.sub("", text.strip()).strip()


def parse_chart(text: str) -> Optional[Dict[str, Any]]:
    """Model output as a JSON object, or None when it cannot be read as one."""
    try:
        parsed = json.loads(strip_fences(text))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


class ChartAnalyzer:

    def __init__(self, client: GeminiClient, model: str) -> None:
        self._client = client
        self._model = model

    async def analyze(
        self,
        query: str,
        response: str,
        search_results: Optional[Mapping[str, Any]] = None,
        context: Optional[SensorContext] = None,
    ) -> AnalysisResult:
        if not should_chart(query, response, search_results):
            logger.debug("No chart for this turn", extra={"reason": "no data triggers"})
            return SKIPPED

        topic = extract_topic(query)
        prompt = analysis_prompt(query, response, context, search_results)
        try:
            payload = await self._client.generate_content(
                self._model, [{"role": "user", "parts": [{"text": prompt}]}]
            )
        except GatewayError as exc:
            logger.warning("Chart analysis failed", extra={"topic": topic, "reason": str(exc)})
            return SKIPPED

        parsed = parse_chart(extract_text(payload))
        if parsed is None:
            logger.info("Chart output unreadable, using fallback", extra={"topic": topic})
            return fallback_chart(topic, context)
        if parsed.get("skip"):
            return SKIPPED

        try:
            chart = ChartData.model_validate(parsed)
        except ValidationError:
            logger.info("Chart output incomplete, using fallback", extra={"topic": topic})
            return fallback_chart(topic, context)
        return AnalysisResult(skip=False, needs_visual=True, chart_data=chart, topic=topic)
