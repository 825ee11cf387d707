from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError as ModelValidationError

from models.records import Reading, ensure_utc, normalize_sensor_id
from services.errors import StoreUnavailable
from settings import get_settings

logger = logging.getLogger(__name__)


class ReadingStore:
    """Append-only collection of readings, optionally mirrored to a JSON-lines file.

    Insertion order is the store's write order and is preserved by every scan.
    A per-sensor index of positions backs sensor-scoped scans.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._readings: List[Reading] = []
        self._by_id: Dict[str, int] = {}
        self._by_sensor: Dict[str, List[int]] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def __len__(self) -> int:
        with self._lock:
            return len(self._readings)

    def append(self, reading: Reading) -> int:
        """Store a reading and return its insertion position."""
        with self._lock:
            if reading.reading_id in self._by_id:
                raise ValueError(f"Reading {reading.reading_id!r} already stored.")
            self._persist(reading)
            return self._index(reading)

    def get(self, reading_id: str) -> Optional[Reading]:
        with self._lock:
            position = self._by_id.get(reading_id)
            if position is None:
                return None
            return self._readings[position].model_copy(deep=True)

    def scan(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        sensor_ids: Optional[Iterable[str]] = None,
        checkpoint: Optional[Callable[[], None]] = None,
    ) -> List[Reading]:
        """Return readings in insertion order, filtered to ``[start, end)``.

        Naive bounds are read as UTC. ``checkpoint`` is called before each
        reading is copied out and may raise to abandon the scan.
        """
        start = ensure_utc(start) if start is not None else None
        end = ensure_utc(end) if end is not None else None
        with self._lock:
            if sensor_ids is None:
                snapshot = list(self._readings)
            else:
                keys = {normalize_sensor_id(sensor_id) for sensor_id in sensor_ids}
                positions = sorted(
                    position for key in keys for position in self._by_sensor.get(key, ())
                )
                snapshot = [self._readings[position] for position in positions]

        matched: List[Reading] = []
        for reading in snapshot:
            if checkpoint is not None:
                checkpoint()
            if start is not None and reading.timestamp < start:
                continue
            if end is not None and reading.timestamp >= end:
                continue
            matched.append(reading.model_copy(deep=True))
        return matched

    def sensor_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._by_sensor)

    def _index(self, reading: Reading) -> int:
        position = len(self._readings)
        self._readings.append(reading)
        self._by_id[reading.reading_id] = position
        self._by_sensor.setdefault(reading.sensor_id, []).append(position)
        return position

    def _persist(self, reading: Reading) -> None:
        if not self.persistence_path:
            return
        try:
            with self.persistence_path.open("a", encoding="utf-8") as handle:
                handle.write(reading.model_dump_json())
                handle.write("\n")
        except OSError as exc:
            raise StoreUnavailable(f"Could not append to store {self.name!r}: {exc}") from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            lines = self.persistence_path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise StoreUnavailable(f"Could not read store {self.name!r}: {exc}") from exc

        for row_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                reading = Reading.model_validate_json(line)
            except ModelValidationError:
                logger.warning(
                    "Skipping unreadable stored reading",
                    extra={"row_count": row_number, "reason": "invalid record"},
                )
                continue
            if reading.reading_id not in self._by_id:
                self._index(reading)


@lru_cache
def build_default_store(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> ReadingStore:
    settings = get_settings()
    store_name = settings.store_name if name is None else name
    store_path = settings.store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return ReadingStore(name=store_name, persistence_path=persistence)
