"""FastAPI application entry point."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from usagewatch.api import admin, usage
from usagewatch.core.config import load_config
from usagewatch.fetch.service import get_service
from usagewatch.logging import configure_logging, get_cycle_id
from usagewatch.storage.database import init_db
from usagewatch.storage.history import prune_samples
from usagewatch.telemetry.events import record_event

configure_logging()

logger = logging.getLogger("usagewatch.app")

app = FastAPI(
    title="UsageWatch",
    version="0.1.0",
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    redoc_url=None,
)
app.include_router(usage.router)
app.include_router(admin.router)


@app.on_event("startup")
def on_startup() -> None:
    config = load_config()
    init_db(config.storage.resolved_database_path())
    prune_samples(timedelta(hours=config.fetch.pace_horizon_hours))
    get_service()


@app.on_event("shutdown")
def on_shutdown() -> None:
    get_service().shutdown()


@app.exception_handler(Exception)
async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        extra={
            "event": "request_error",
            "path": request.url.path,
            "cycle_id": get_cycle_id(),
        },
    )
    record_event(
        "request_error",
        "ERROR",
        message=str(exc),
        meta={
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "message": "Internal server error",
                "type": "internal_server_error",
                "code": "internal_error",
            }
        },
    )
