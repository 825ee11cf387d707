from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import (
    render_alert_trend,
    render_health,
    render_ingest,
    render_latest,
    render_readings,
    render_rollup,
    render_sensor,
    render_sensors,
    render_series,
)

THRESHOLD_BOUNDS = ("warning_min", "warning_max", "critical_min", "critical_max")


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the sensor telemetry service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _parse_pairs(pairs: List[str], option: str) -> Dict[str, float]:
    parsed: Dict[str, float] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected NAME=VALUE, got {pair!r}.", param_hint=option)
        try:
            parsed[name.strip()] = float(raw)
        except ValueError as exc:
            raise typer.BadParameter(
                f"Value for {name.strip()!r} is not a number: {raw!r}.", param_hint=option
            ) from exc
    return parsed


def _parse_thresholds(pairs: List[str]) -> Dict[str, Dict[str, float]]:
    thresholds: Dict[str, Dict[str, float]] = {}
    for name, value in _parse_pairs(pairs, "--threshold").items():
        parameter, sep, bound = name.partition(".")
        if not sep or bound not in THRESHOLD_BOUNDS:
            raise typer.BadParameter(
                f"Expected PARAMETER.BOUND=VALUE with BOUND one of {', '.join(THRESHOLD_BOUNDS)}.",
                param_hint="--threshold",
            )
        thresholds.setdefault(parameter, {})[bound] = value
    return thresholds


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP response.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Registered sensor identifier."),
    measure: List[str] = typer.Option(
        [], "--measure", "-m", help="Standard measurement as NAME=VALUE; repeatable."
    ),
    custom: List[str] = typer.Option(
        [], "--custom", "-c", help="Custom measurement as NAME=VALUE; repeatable."
    ),
    battery: Optional[float] = typer.Option(None, "--battery", help="Battery level in percent."),
    signal: Optional[float] = typer.Option(None, "--signal", help="Signal strength in dBm."),
    firmware: Optional[str] = typer.Option(None, "--firmware", help="Firmware version."),
    timestamp: Optional[str] = typer.Option(
        None, "--timestamp", help="ISO-8601 time the reading was taken (defaults to now)."
    ),
) -> None:
    """Submit one measurement and show its quality score and alerts."""
    state = _get_state(ctx)
    measurements = _parse_pairs(measure, "--measure")
    custom_measurements = _parse_pairs(custom, "--custom")
    metadata = {
        key: value
        for key, value in (
            ("battery_level", battery),
            ("signal_strength", signal),
            ("firmware_version", firmware),
        )
        if value is not None
    }
    payload = state.client.ingest(
        sensor_id,
        measurements,
        custom_measurements=custom_measurements,
        device_metadata=metadata,
        timestamp=timestamp,
    )
    render_ingest(payload)


@app.command("series")
def series_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor identifier."),
    granularity: Optional[str] = typer.Option(
        None, "--granularity", "-g", help="hour, day, week or month (defaults to CLI_DEFAULT_GRANULARITY)."
    ),
    start: Optional[str] = typer.Option(None, "--start", help="Inclusive ISO-8601 start."),
    end: Optional[str] = typer.Option(None, "--end", help="Exclusive ISO-8601 end."),
) -> None:
    """Show time-bucketed statistics for a sensor."""
    state = _get_state(ctx)
    unit = granularity or state.config.granularity
    render_series(state.client.series(sensor_id, unit, start=start, end=end))


@app.command("latest")
def latest_command(
    ctx: typer.Context,
    sensor_ids: Optional[List[str]] = typer.Argument(
        None, help="Sensor identifiers; omit for every sensor."
    ),
) -> None:
    """Show the most recent reading per sensor."""
    state = _get_state(ctx)
    render_latest(state.client.latest(sensor_ids or []))


@app.command("alerts")
def alerts_command(
    ctx: typer.Context,
    granularity: Optional[str] = typer.Option(
        None, "--granularity", "-g", help="hour, day, week or month (defaults to CLI_DEFAULT_GRANULARITY)."
    ),
    start: Optional[str] = typer.Option(None, "--start", help="Inclusive ISO-8601 start."),
    end: Optional[str] = typer.Option(None, "--end", help="Exclusive ISO-8601 end."),
) -> None:
    """Show alert counts per bucket split by severity."""
    state = _get_state(ctx)
    unit = granularity or state.config.granularity
    render_alert_trend(state.client.alert_trend(unit, start=start, end=end))


@app.command("rollup")
def rollup_command(
    ctx: typer.Context,
    dimension: str = typer.Option("region", "--by", help="region or sensor."),
    start: Optional[str] = typer.Option(None, "--start", help="Inclusive ISO-8601 start."),
    end: Optional[str] = typer.Option(None, "--end", help="Exclusive ISO-8601 end."),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Keep only the top N."),
) -> None:
    """Show alert counts grouped by region or sensor."""
    state = _get_state(ctx)
    render_rollup(state.client.rollup(dimension, start=start, end=end, limit=limit))


@app.command("health")
def health_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor identifier."),
) -> None:
    """Show whether a sensor is online and when maintenance is due."""
    state = _get_state(ctx)
    render_health(state.client.health(sensor_id))


@app.command("register")
def register_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="New sensor identifier."),
    name: str = typer.Option(..., "--name", "-n", help="Human-readable sensor name."),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="Region used by rollups."),
    heartbeat: Optional[int] = typer.Option(
        None, "--heartbeat", min=1, help="Expected seconds between readings."
    ),
    threshold: List[str] = typer.Option(
        [], "--threshold", "-t", help="Threshold as PARAMETER.BOUND=VALUE; repeatable."
    ),
) -> None:
    """Register a sensor and its alert thresholds."""
    state = _get_state(ctx)
    thresholds = _parse_thresholds(threshold)
    render_sensor(
        state.client.register(
            sensor_id,
            name,
            region=region,
            heartbeat_interval=heartbeat,
            thresholds=thresholds,
        )
    )


@app.command("sensors")
def sensors_command(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(
        None, "--status", help="active, inactive, maintenance, error or offline."
    ),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="Only this region."),
    online: Optional[bool] = typer.Option(
        None, "--online/--offline", help="Only sensors that are online, or only offline ones."
    ),
    limit: int = typer.Option(20, "--limit", min=1),
    offset: int = typer.Option(0, "--offset", min=0),
) -> None:
    """List registered sensors with health and their latest reading."""
    state = _get_state(ctx)
    render_sensors(
        state.client.sensors(
            status=status, region=region, online=online, limit=limit, offset=offset
        )
    )


@app.command("readings")
def readings_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor identifier."),
    quality: Optional[str] = typer.Option(
        None, "--quality", "-q", help="excellent, good, fair, poor or invalid."
    ),
    start: Optional[str] = typer.Option(None, "--start", help="Inclusive ISO-8601 start."),
    end: Optional[str] = typer.Option(None, "--end", help="Exclusive ISO-8601 end."),
    limit: int = typer.Option(100, "--limit", min=1),
    offset: int = typer.Option(0, "--offset", min=0),
) -> None:
    """Show a sensor's stored readings, newest first."""
    state = _get_state(ctx)
    render_readings(
        state.client.readings(
            sensor_id, start=start, end=end, quality=quality, limit=limit, offset=offset
        )
    )
