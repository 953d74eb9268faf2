from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.reconciler import build_default_runner
from services.scheduler import build_default_scheduler


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    scheduler = build_default_scheduler()
    scheduler.start()
    try:
        yield
    finally:
        scheduler.shutdown()
        scheduler.runner.shutdown()
        build_default_scheduler.cache_clear()
        build_default_runner.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Device Telemetry Reconciler",
        description="Periodic enrichment of device readings with channel status and shift labels.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
