from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the telemetry service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def ingest(
        self,
        sensor_id: str,
        measurements: Dict[str, float],
        custom_measurements: Optional[Dict[str, float]] = None,
        device_metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"measurements": measurements}
        if custom_measurements:
            body["custom_measurements"] = custom_measurements
        if device_metadata:
            body["device_metadata"] = device_metadata
        if timestamp:
            body["timestamp"] = timestamp
        return self._request("POST", f"/sensors/{sensor_id}/readings", json=body)

    def series(
        self,
        sensor_id: str,
        granularity: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = self._window(start, end)
        params["granularity"] = granularity
        return self._request("GET", f"/sensors/{sensor_id}/series", params=params)

    def latest(self, sensor_ids: Sequence[str] = ()) -> Dict[str, Any]:
        params: List[tuple[str, str]] = [("sensor_id", sensor_id) for sensor_id in sensor_ids]
        return self._request("GET", "/readings/latest", params=params)

    def alert_trend(
        self,
        granularity: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = self._window(start, end)
        params["granularity"] = granularity
        return self._request("GET", "/alerts/trend", params=params)

    def rollup(
        self,
        dimension: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = self._window(start, end)
        params["dimension"] = dimension
        if limit is not None:
            params["limit"] = limit
        return self._request("GET", "/alerts/rollup", params=params)

    def health(self, sensor_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/sensors/{sensor_id}/health")

    def register(
        self,
        sensor_id: str,
        name: str,
        region: Optional[str] = None,
        heartbeat_interval: Optional[int] = None,
        thresholds: Optional[Dict[str, Dict[str, float]]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"sensor_id": sensor_id, "name": name}
        if region:
            body["region"] = region
        if heartbeat_interval is not None:
            body["heartbeat_interval"] = heartbeat_interval
        if thresholds:
            body["thresholds"] = thresholds
        return self._request("POST", "/sensors", json=body)

    def sensors(
        self,
        status: Optional[str] = None,
        region: Optional[str] = None,
        online: Optional[bool] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if region:
            params["region"] = region
        if online is not None:
            params["online"] = str(online).lower()
        return self._request("GET", "/sensors", params=params)

    def readings(
        self,
        sensor_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        quality: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Dict[str, Any]:
        params = self._window(start, end)
        params.update(limit=limit, offset=offset)
        if quality:
            params["quality"] = quality
        return self._request("GET", f"/sensors/{sensor_id}/readings", params=params)

    @staticmethod
    def _window(start: Optional[str], end: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if start:
            params["start"] = start
        if end:
            params["end"] = end
        return params

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1)
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
