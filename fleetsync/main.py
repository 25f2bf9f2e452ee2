"""FastAPI application entry point."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fleetsync.api import admin, providers, refresh, trailers
from fleetsync.core.config import load_config
from fleetsync.logging import configure_logging, get_request_id
from fleetsync.middleware.request_context import RequestContextMiddleware
from fleetsync.runtime import scheduler
from fleetsync.storage.database import init_db
from fleetsync.telemetry.events import record_event

configure_logging()

logger = logging.getLogger("fleetsync.app")


def _scheduler_enabled() -> bool:
    return os.getenv("SCHEDULER_ENABLED", "true").lower() in {"1", "true", "yes"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    load_config()
    if _scheduler_enabled():
        scheduler.start()
    else:
        logger.info("Scheduler disabled", extra={"event": "scheduler_disabled"})
    yield
    await scheduler.stop()


app = FastAPI(
    title="FleetSync",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(refresh.router)
app.include_router(providers.router)
app.include_router(trailers.router)
app.include_router(admin.router)
app.add_middleware(RequestContextMiddleware)


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "scheduler_running": scheduler.running}


@app.exception_handler(Exception)
async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        extra={
            "event": "request_error",
            "path": request.url.path,
            "request_id": get_request_id(),
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
