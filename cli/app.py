from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import (
    render_alerts,
    render_pump,
    render_reading,
    render_recommendation,
    render_sensors,
)


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


class PumpCommand(str, Enum):
    on = "on"
    off = "off"
    status = "status"


app = typer.Typer(
    help="Utilities for interacting with the Bhoomi Dut farm gateway.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Gateway API base URL (defaults to API_BASE_URL env or http://localhost:3000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Request timeout in seconds (defaults to CLI_TIMEOUT env or 30).",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("sensors")
def sensors_command(
    ctx: typer.Context,
    time_range: str = typer.Option("24h", "--range", "-r", help="1h, 24h, 7d, 30d or 1y."),
) -> None:
    """Show current readings, trends and aggregates."""
    state = _get_state(ctx)
    render_sensors(state.client.sensors(time_range))


@app.command("latest")
def latest_command(ctx: typer.Context) -> None:
    """Show the newest sensor reading."""
    state = _get_state(ctx)
    render_reading(state.client.latest_reading())


@app.command("pump")
def pump_command(
    ctx: typer.Context,
    command: PumpCommand = typer.Argument(..., help="on, off or status."),
) -> None:
    """Switch the irrigation pump or show its state."""
    state = _get_state(ctx)
    if command is PumpCommand.status:
        render_pump(state.client.pump_status())
        return
    payload = state.client.set_pump(command.value.upper())
    render_pump(payload)
    if payload.get("success") is False:
        raise typer.Exit(code=1)


@app.command("alerts")
def alerts_command(
    ctx: typer.Context,
    soil_moisture: Optional[float] = typer.Option(None, "--soil-moisture"),
    temperature: Optional[float] = typer.Option(None, "--temperature"),
    humidity: Optional[float] = typer.Option(None, "--humidity"),
    nitrogen: Optional[float] = typer.Option(None, "--nitrogen"),
    phosphorus: Optional[float] = typer.Option(None, "--phosphorus"),
    potassium: Optional[float] = typer.Option(None, "--potassium"),
) -> None:
    """Check readings against thresholds; the gateway texts any alerts."""
    state = _get_state(ctx)
    values = {
        "soilMoisture": soil_moisture,
        "temperature": temperature,
        "humidity": humidity,
        "nitrogen": nitrogen,
        "phosphorus": phosphorus,
        "potassium": potassium,
    }
    reading = {key: value for key, value in values.items() if value is not None}
    if not reading:
        raise typer.BadParameter("Provide at least one reading, e.g. --soil-moisture 15.")
    render_alerts(state.client.check_alerts(reading))


@app.command("recommend")
def recommend_command(ctx: typer.Context) -> None:
    """Ask the ML service what to do about the latest reading."""
    state = _get_state(ctx)
    render_recommendation(state.client.recommend_latest())


@app.command("translate")
def translate_command(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Text to translate."),
    target: str = typer.Option(..., "--to", help="Target language code, e.g. hi or bn."),
) -> None:
    """Translate text through the gateway."""
    state = _get_state(ctx)
    payload = state.client.translate(text, target)
    typer.echo(payload.get("translatedText", ""))
