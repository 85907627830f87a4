from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _trend(trend: Dict[str, Any]) -> str:
    arrow = "up" if trend.get("increasing") else "down"
    return f"{trend.get('change')}% {arrow}"


def render_sensors(payload: Dict[str, Any]) -> None:
    current = payload.get("current") or {}
    echo_heading(f"Sensors ({payload.get('range')})")
    echo_key_values(
        [
            ("timestamp", current.get("timestamp")),
            ("soil_moisture", f"{current.get('soilMoisture')}% ({_trend(payload.get('trend') or {})})"),
            ("temperature", current.get("temperature")),
            ("humidity", current.get("humidity")),
        ]
    )

    npk = payload.get("npk") or {}
    typer.echo()
    echo_heading("NPK")
    echo_key_values(
        [
            ("nitrogen", npk.get("nitrogen")),
            ("phosphorus", npk.get("phosphorus")),
            ("potassium", npk.get("potassium")),
            ("average", f"{npk.get('average')} ({_trend(npk.get('trend') or {})})"),
        ]
    )

    aggregates = payload.get("aggregates") or {}
    typer.echo()
    echo_heading("Aggregates")
    metrics = aggregates.get("metrics") or {}
    if not aggregates.get("rowCount"):
        typer.echo("No aggregates available.")
        return
    typer.echo(f"row_count: {aggregates.get('rowCount')}")
    for name, metric in metrics.items():
        typer.echo(
            f"  - {name}: min={metric.get('minValue')} max={metric.get('maxValue')} "
            f"mean={metric.get('meanValue')}"
        )


def render_pump(payload: Dict[str, Any]) -> None:
    if payload.get("success") is False:
        typer.secho(
            f"{payload.get('warning')} (requested {payload.get('state')})",
            fg=typer.colors.YELLOW,
        )
        return
    pairs = [("state", payload.get("state"))]
    if payload.get("entryId") is not None:
        pairs.append(("entry_id", payload.get("entryId")))
    if payload.get("lastUpdate") is not None:
        pairs.append(("last_update", payload.get("lastUpdate")))
    echo_key_values(pairs)


def render_alerts(payload: Dict[str, Any]) -> None:
    alerts = payload.get("alerts") or []
    echo_heading(f"Alerts sent: {payload.get('alertsSent', 0)}")
    if not alerts:
        typer.echo("All readings within thresholds.")
    for alert in alerts:
        typer.echo(f"  - {alert}")


def render_recommendation(payload: Dict[str, Any]) -> None:
    echo_heading("Recommendation")
    echo_key_values(
        [
            ("action", payload.get("action")),
            ("urgency", payload.get("urgency")),
            ("confidence", payload.get("confidence")),
            ("semantic_tag", payload.get("semantic_tag")),
        ]
    )


def render_reading(payload: Dict[str, Any]) -> None:
    echo_heading("Latest reading")
    echo_key_values(
        [
            ("timestamp", payload.get("timestamp")),
            ("soil_moisture", payload.get("soilMoisture")),
            ("temperature", payload.get("temperature")),
            ("humidity", payload.get("humidity")),
            ("npk", f"{payload.get('nitrogen')}/{payload.get('phosphorus')}/{payload.get('potassium')}"),
        ]
    )
