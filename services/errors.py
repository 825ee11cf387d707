"""Error taxonomy for ingestion and analytics."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for errors raised by the telemetry core."""


class ValidationError(TelemetryError, ValueError):
    """A measurement or query argument is malformed or out of domain."""


class FutureTimestamp(ValidationError):
    """A reading claims to have been taken after the current time."""


class InvalidGranularity(TelemetryError, ValueError):
    """An aggregation was requested with an unsupported bucket size."""


class SensorNotFound(TelemetryError, LookupError):
    """The sensor is not present in the registry."""

    def __init__(self, sensor_id: str) -> None:
        super().__init__(f"Sensor {sensor_id!r} is not registered.")
        self.sensor_id = sensor_id


class SensorAlreadyRegistered(TelemetryError, ValueError):
    """A sensor with the same identifier is already registered."""

    def __init__(self, sensor_id: str) -> None:
        super().__init__(f"Sensor {sensor_id!r} is already registered.")
        self.sensor_id = sensor_id


class QueryTimeout(TelemetryError, TimeoutError):
    """An aggregation query exceeded its time budget."""


class QueryCancelled(QueryTimeout):
    """An aggregation query was cancelled by its caller."""


class StoreUnavailable(TelemetryError):
    """The backing store could not be read or written."""
