from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from services.errors import ConfigurationError, UpstreamError
from services.thingspeak import (
    INVALID_PUMP_STATE,
    PumpController,
    ThingSpeakClient,
    parse_numeric,
    parse_pump_action,
    parse_sensor_feed,
    result_count,
)
from tests.helpers import feed, make_settings, mock_client


FEEDS = [
    feed(1, "2024-05-01T10:00:00Z", field1="40", field2="28.5", field3="61", field5="30", field6="20", field7="40"),
    feed(2, "not-a-date", field1="41"),
    feed(3, "2024-05-01T10:10:00Z", field1="50", field2="29", field3="", field5="60", field6="20", field7="40"),
]


@pytest.mark.parametrize(
    ("time_range", "expected"),
    [("1h", 60), ("24h", 144), ("7d", 168), ("30d", 720), ("1y", 8760), ("2w", 144)],
)
def test_result_count(time_range: str, expected: int) -> None:
    assert result_count(time_range) == expected


def test_parse_numeric_falls_back() -> None:
    assert parse_numeric(" 12.5 ") == 12.5
    assert parse_numeric(None) == 0.0
    assert parse_numeric("", fallback=7.0) == 7.0
    assert parse_numeric("abc") == 0.0
    assert parse_numeric("nan") == 0.0


def test_parse_sensor_feed_maps_fields() -> None:
    reading = parse_sensor_feed(FEEDS[0])

    assert reading.timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert reading.soil_moisture == 40.0
    assert reading.temperature == 28.5
    assert reading.humidity == 61.0
    assert (reading.nitrogen, reading.phosphorus, reading.potassium) == (30.0, 20.0, 40.0)


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ({"action": "ON"}, 1),
        ({"action": "on"}, 1),
        ({"state": "OFF"}, 0),
        ({"value": 1}, 1),
        ({"value": 0}, 0),
        ({"value": "0"}, 0),
        ({"action": None, "state": "on"}, 1),
        ({"value": 1.0}, 1),
        ({"value": 0.0}, 0),
    ],
)
def test_parse_pump_action_accepts_known_values(body: dict, expected: int) -> None:
    assert parse_pump_action(body) == expected


@pytest.mark.parametrize("body", [None, {}, {"action": "maybe"}, {"value": 2}, {"value": True}, {"value": 0.5}])
def test_parse_pump_action_rejects_unknown_values(body) -> None:
    with pytest.raises(ValueError, match="Invalid state"):
        parse_pump_action(body)
    assert INVALID_PUMP_STATE == "Invalid state. Use 'ON', 'OFF', 1, or 0"


def _feeds_handler(requests: list):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"channel": {"id": 1001}, "feeds": FEEDS})

    return handler


def test_soil_moisture_snapshot_skips_bad_rows_and_computes_trend() -> None:
    requests: list = []
    client = ThingSpeakClient(mock_client(_feeds_handler(requests)), make_settings())

    snapshot = asyncio.run(client.soil_moisture_snapshot("7d"))

    assert requests[0].url.path == "/channels/1001/feeds.json"
    assert requests[0].url.params["results"] == "168"
    assert requests[0].url.params["api_key"] == "READKEY"
    assert len(snapshot.history) == 2
    assert snapshot.current.soil_moisture == 50.0
    assert snapshot.trend.change == 25.0
    assert snapshot.trend.increasing is True


def test_npk_snapshot_uses_average_trend() -> None:
    client = ThingSpeakClient(mock_client(_feeds_handler([])), make_settings())

    snapshot = asyncio.run(client.npk_snapshot())

    assert snapshot.current.nitrogen == 60.0
    assert snapshot.trend.change == 33.3
    assert snapshot.trend.increasing is True


def test_empty_channel_raises_upstream_error() -> None:
    client = ThingSpeakClient(
        mock_client(lambda request: httpx.Response(200, json={"feeds": []})), make_settings()
    )

    with pytest.raises(UpstreamError, match="No data available"):
        asyncio.run(client.soil_moisture_snapshot())
    assert asyncio.run(client.latest_reading()) is None


def test_upstream_error_status_is_reported() -> None:
    client = ThingSpeakClient(
        mock_client(lambda request: httpx.Response(400, text="bad key")), make_settings()
    )

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(client.history())

    assert excinfo.value.status_code == 502
    assert excinfo.value.upstream_status == 400
    assert "ThingSpeak API error: 400 - bad key" in str(excinfo.value)


def test_missing_channel_configuration() -> None:
    client = ThingSpeakClient(
        mock_client(lambda request: httpx.Response(200, json={})),
        make_settings(channel_id=None),
    )

    with pytest.raises(ConfigurationError):
        asyncio.run(client.history())


def test_vital_stats_reads_second_channel() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/channels/2002/feeds.json"
        assert request.url.params["api_key"] == "VITALKEY"
        return httpx.Response(
            200,
            json={"feeds": [feed(1, "2024-05-01T10:00:00Z", field1="0.1", field2="0.5", field3="0.67", field4="5", field5="40", field6="2.1")]},
        )

    client = ThingSpeakClient(mock_client(handler), make_settings())

    stats = asyncio.run(client.vital_stats("1h"))

    assert stats[0].ndvi == 0.67
    assert stats[0].chlorophyll == 40.0


def test_pump_write_success_returns_entry_id() -> None:
    seen: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="1234")

    controller = PumpController(mock_client(handler), make_settings())

    result = asyncio.run(controller.set_state(1))

    assert seen[0].method == "POST"
    assert seen[0].url.path == "/update.json"
    assert seen[0].url.params["api_key"] == "WRITEKEY"
    assert seen[0].url.params["field8"] == "1"
    assert result.state == "on"
    assert result.entry_id == "1234"
    assert result.rate_limited is False


def test_pump_write_zero_body_is_rate_limited_with_attempted_state() -> None:
    controller = PumpController(
        mock_client(lambda request: httpx.Response(200, text="0")), make_settings()
    )

    result = asyncio.run(controller.set_state(0))

    assert result.rate_limited is True
    assert result.state == "off"
    assert result.entry_id is None


def test_pump_write_upstream_failure() -> None:
    controller = PumpController(
        mock_client(lambda request: httpx.Response(500, text="boom")), make_settings()
    )

    with pytest.raises(UpstreamError, match="Failed to update ThingSpeak"):
        asyncio.run(controller.set_state(1))


def test_pump_state_reads_last_field_value() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/channels/1001/fields/8/last.json"
        return httpx.Response(200, json={"created_at": "2024-05-01T10:00:00Z", "field8": "1"})

    controller = PumpController(mock_client(handler), make_settings())

    state = asyncio.run(controller.get_state())

    assert state.state == "on"
    assert state.value == 1
    assert state.last_update == "2024-05-01T10:00:00Z"
