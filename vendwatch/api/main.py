"""
vendwatch - HTTP API

FastAPI application that provides:
- Heartbeat ingestion and live status
- Alarm queries, acknowledgment and cleanup
- Cleaning log entries and statistics
- Monitor control (status, manual run, thresholds)

The monitor controller is started in the application lifespan.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..common.exceptions import (
    ConfigValidationError,
    InvalidStateError,
    NotFoundError,
    TransientIOError,
    VendwatchError,
)
from ..common.logging_setup import get_service_logger
from ..monitor import MonitorController
from .routers import alarms, cleaning, heartbeats, monitor

logger = get_service_logger("api")

VERSION = "1.0.0"

# Comma-separated list, e.g. ALLOWED_ORIGINS=https://ops.example.com
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "").split(",")
    if origin.strip()
] or ["http://localhost:3000", "http://127.0.0.1:3000"]

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStateError: status.HTTP_409_CONFLICT,
    ConfigValidationError: status.HTTP_400_BAD_REQUEST,
    TransientIOError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def vendwatch_error_handler(request: Request, exc: VendwatchError) -> JSONResponse:
    """Map domain errors to HTTP status codes."""
    code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    body: dict = {"detail": exc.message}
    if isinstance(exc, ConfigValidationError):
        body["errors"] = exc.errors
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=code, content=body)


def create_app(controller: MonitorController, start_monitor: bool = True) -> FastAPI:
    """
    Build the API around a controller.

    Args:
        controller: Monitor controller shared by all routes
        start_monitor: Start the detection loops in the lifespan. When False
            only the live status publisher is started.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_monitor:
            await controller.start()
        else:
            await controller.publisher.start()
        logger.info("API started", extra={"monitor": start_monitor})

        yield

        if start_monitor:
            await controller.shutdown()
        else:
            controller.publisher.stop()
        logger.info("API stopped")

    app = FastAPI(
        title="vendwatch API",
        description="Vending fleet liveness, cleaning and alarm monitoring.",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.controller = controller

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(VendwatchError, vendwatch_error_handler)

    app.include_router(heartbeats.router, prefix="/api/heartbeats", tags=["Heartbeats"])
    app.include_router(alarms.router, prefix="/api/alarms", tags=["Alarms"])
    app.include_router(cleaning.router, prefix="/api/cleaning", tags=["Cleaning"])
    app.include_router(monitor.router, prefix="/api/monitor", tags=["Monitor"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "monitor_running": controller.is_running,
            "version": VERSION,
        }

    return app
