"""In-process fan-out of reading and alert events to live subscribers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from itertools import count
from threading import Lock
from typing import Callable, Dict, List

from models.records import AlertEvent, Reading

logger = logging.getLogger(__name__)

READING_EVENT = "sensor_reading"
ALERT_EVENT = "sensor_alert"


@dataclass(frozen=True)
class TelemetryEvent:
    kind: str
    sensor_id: str
    reading: Reading
    alerts: List[AlertEvent] = field(default_factory=list)


Subscriber = Callable[[TelemetryEvent], None]


class EventNotifier:
    """Fire-and-forget, at-most-once delivery to currently registered callbacks.

    There is no replay log and no acknowledgement: a subscriber that is not
    registered when an event is published never sees it, and a subscriber that
    raises simply loses that event.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[int, Subscriber] = {}
        self._ids = count(1)
        self._lock = Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""
        with self._lock:
            token = next(self._ids)
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: TelemetryEvent) -> int:
        """Deliver to every current subscriber; return how many accepted it."""
        with self._lock:
            targets = list(self._subscribers.values())

        delivered = 0
        for callback in targets:
            try:
                callback(event)
            except Exception:  # noqa: BLE001 - best effort delivery
                logger.warning(
                    "Dropping event for failing subscriber",
                    exc_info=True,
                    extra={"event": event.kind, "sensor_id": event.sensor_id},
                )
                continue
            delivered += 1
        return delivered


@lru_cache
def build_default_notifier() -> EventNotifier:
    return EventNotifier()
