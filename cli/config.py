from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 30.0
DEFAULT_GRANULARITY = "hour"
GRANULARITIES = ("hour", "day", "week", "month")

_BASE_URL_ENV = "API_BASE_URL"
_TIMEOUT_ENV = "CLI_REQUEST_TIMEOUT"
_GRANULARITY_ENV = "CLI_DEFAULT_GRANULARITY"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = DEFAULT_TIMEOUT
    granularity: str = DEFAULT_GRANULARITY


def _read_timeout(value: Optional[str]) -> float:
    candidate = (value or "").strip()
    try:
        parsed = float(candidate) if candidate else DEFAULT_TIMEOUT
    except ValueError:
        return DEFAULT_TIMEOUT
    return parsed if parsed > 0 else DEFAULT_TIMEOUT


def _read_granularity(value: Optional[str]) -> str:
    candidate = (value or "").strip().lower()
    return candidate if candidate in GRANULARITIES else DEFAULT_GRANULARITY


def load_config(
    base_url: Optional[str] = None,
    request_timeout: Optional[float] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    if request_timeout is None:
        request_timeout = _read_timeout(os.getenv(_TIMEOUT_ENV))
    return CLIConfig(
        base_url=url.rstrip("/"),
        request_timeout=request_timeout,
        granularity=_read_granularity(os.getenv(_GRANULARITY_ENV)),
    )
