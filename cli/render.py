from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _format_stat(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.2f}"
    return "-" if value is None else str(value)


def render_ingest(payload: Dict[str, Any]) -> None:
    echo_heading("Reading Accepted")
    echo_key_values(
        [
            ("reading_id", payload.get("reading_id")),
            ("sensor_id", payload.get("sensor_id")),
            ("timestamp", payload.get("timestamp")),
            ("quality_score", payload.get("quality_score")),
            ("quality_category", payload.get("quality_category")),
        ]
    )

    flags = payload.get("quality_flags") or []
    if flags:
        typer.echo("quality_flags:")
        for flag in flags:
            typer.echo(f"  - [{flag.get('severity')}] {flag.get('kind')}: {flag.get('description')}")

    typer.echo()
    echo_heading("Alerts")
    alerts = payload.get("alerts") or []
    if alerts:
        for alert in alerts:
            typer.secho(
                f"  - {alert.get('type')}: measured {alert.get('measured_value')}"
                f" vs threshold {alert.get('threshold_value')} ({alert.get('level')})",
                fg=typer.colors.YELLOW,
            )
    else:
        typer.echo("No alerts triggered.")


def render_series(payload: Dict[str, Any]) -> None:
    echo_heading(f"Series for {payload.get('sensor_id')} ({payload.get('granularity')})")
    echo_key_values(
        [
            ("start", payload.get("start")),
            ("end", payload.get("end")),
            ("total_count", payload.get("total_count")),
        ]
    )
    buckets = payload.get("buckets") or []
    typer.echo()
    if not buckets:
        typer.echo("No readings in range.")
        return
    for bucket in buckets:
        typer.echo(f"{bucket.get('bucket')}  count={bucket.get('count')}")
        for name, stats in (bucket.get("parameters") or {}).items():
            typer.echo(
                f"    {name}: avg={_format_stat(stats.get('avg'))}"
                f" min={_format_stat(stats.get('min'))} max={_format_stat(stats.get('max'))}"
            )


def render_latest(payload: Dict[str, Any]) -> None:
    echo_heading("Latest Readings")
    readings = payload.get("readings") or []
    if not readings:
        typer.echo("No readings stored.")
        return
    for reading in readings:
        values = ", ".join(
            f"{name}={value}" for name, value in (reading.get("measurements") or {}).items()
        )
        typer.echo(
            f"  - {reading.get('sensor_id')} @ {reading.get('timestamp')}"
            f" [{reading.get('quality_category')}] {values}"
        )


def render_alert_trend(payload: Dict[str, Any]) -> None:
    echo_heading(f"Alert Trend ({payload.get('granularity')})")
    echo_key_values([("total", payload.get("total"))])
    buckets = payload.get("buckets") or []
    if not buckets:
        typer.echo("No alerts in range.")
        return
    for bucket in buckets:
        typer.echo(
            f"  {bucket.get('bucket')}  count={bucket.get('count')}"
            f" high={bucket.get('high')} medium={bucket.get('medium')} low={bucket.get('low')}"
        )


def render_rollup(payload: Dict[str, Any]) -> None:
    echo_heading(f"Alert Rollup by {payload.get('dimension')}")
    entries = payload.get("entries") or []
    if not entries:
        typer.echo("No alerts in range.")
        return
    for entry in entries:
        breakdown = entry.get("breakdown") or {}
        typer.echo(
            f"  - {entry.get('key')}: {entry.get('count')} alerts"
            f" (high={breakdown.get('high', 0)} medium={breakdown.get('medium', 0)}"
            f" low={breakdown.get('low', 0)}), sensors={entry.get('sensor_count')}"
        )


def render_health(payload: Dict[str, Any]) -> None:
    echo_heading(f"Health for {payload.get('sensor_id')}")
    online = payload.get("online")
    typer.secho(
        f"online: {online}",
        fg=typer.colors.GREEN if online else typer.colors.RED,
    )
    echo_key_values(
        [
            ("maintenance_status", payload.get("maintenance_status")),
            ("seconds_since_heartbeat", payload.get("seconds_since_heartbeat")),
        ]
    )


def render_sensor(payload: Dict[str, Any]) -> None:
    sensor = payload.get("sensor") or {}
    echo_heading(f"Sensor {sensor.get('sensor_id')} Registered")
    echo_key_values(
        [
            ("name", sensor.get("name")),
            ("region", sensor.get("region") or "-"),
            ("status", sensor.get("status")),
            ("heartbeat_interval", sensor.get("heartbeat_interval")),
            ("thresholds", ", ".join(sorted(sensor.get("thresholds") or {})) or "-"),
        ]
    )


def render_sensors(payload: Dict[str, Any]) -> None:
    echo_heading("Sensors")
    echo_key_values([("total", payload.get("total"))])
    sensors = payload.get("sensors") or []
    if not sensors:
        typer.echo("No sensors match.")
        return
    for item in sensors:
        sensor = item.get("sensor") or {}
        latest = item.get("latest_reading") or {}
        online = item.get("online")
        typer.secho(
            f"  - {sensor.get('sensor_id')} [{sensor.get('status')}]"
            f" region={sensor.get('region') or '-'}"
            f" online={online} maintenance={item.get('maintenance_status')}"
            f" last_reading={latest.get('timestamp') or '-'}",
            fg=None if online else typer.colors.RED,
        )


def render_readings(payload: Dict[str, Any]) -> None:
    echo_heading(f"Readings for {payload.get('sensor_id')}")
    echo_key_values(
        [
            ("total", payload.get("total")),
            ("offset", payload.get("offset")),
        ]
    )
    readings = payload.get("readings") or []
    if not readings:
        typer.echo("No readings in range.")
        return
    for reading in readings:
        values = ", ".join(
            f"{name}={value}" for name, value in (reading.get("measurements") or {}).items()
        )
        alerts = len(reading.get("alerts") or [])
        typer.echo(
            f"  - {reading.get('timestamp')} score={reading.get('quality_score')}"
            f" [{reading.get('quality_category')}] alerts={alerts} {values}"
        )
