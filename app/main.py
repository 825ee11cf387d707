from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.analytics import build_default_analytics
from services.ingestion import build_default_ingestion


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    ingestion = build_default_ingestion()
    try:
        yield
    finally:
        ingestion.shutdown()
        build_default_ingestion.cache_clear()
        build_default_analytics.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Sensor Telemetry Aggregator",
        description="Quality scoring, alert derivation and time-bucketed analytics for sensor readings.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
