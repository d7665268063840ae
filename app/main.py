"""
Booking Assistant API

FastAPI application entry point that ties all components together.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from app.config import settings
from app.api.routes import chat, health, voice
from app.core.booking.types import ALLOWED_DURATIONS
from app.core.errors import (
    BookingError,
    ConflictError,
    FrequencyLimitExceeded,
    NotFoundError,
    SessionBusyError,
    StoreError,
    ValidationError,
)
from app.core.intelligence.session.store import reset_session_store
from app.core.services import get_services, shutdown_services
from app.infra.database import init_db, close_db
from app.infra.redis import RedisClient


def setup_logging() -> None:
    """Configure logging based on environment."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    setup_logging()
    hours = settings.business_hours
    logger.info(
        f"Starting {settings.app_name} ({settings.app_env}): "
        f"store={settings.booking_store}, parser={settings.parser_backend}, "
        f"hours={hours.start_hour:02d}:00-{hours.end_hour:02d}:00 {hours.timezone}"
    )
    health.set_start_time()

    # Schema creation is a dev convenience; deployed databases are migrated
    if settings.is_development and settings.booking_store == "sql":
        try:
            await init_db()
            logger.info("Database tables initialized")
        except Exception as e:
            logger.warning(f"Database init skipped: {e}")

    # Sessions survive without Redis, so a failed probe only degrades
    if not await RedisClient.get_client():
        logger.warning("Redis unavailable - sessions kept in process memory")

    get_services()

    yield

    # Pending calendar/CRM syncs finish before their clients close
    await shutdown_services()
    logger.info("Sync outbox drained")

    await RedisClient.close()
    reset_session_store()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Booking Assistant API",
    description="""
    Conversational appointment booking for a single bookable resource.

    ## Features
    - 📅 Free-slot listing inside business hours
    - 🚫 Write-time conflict detection with nearby alternatives
    - ⏱️ Per-requester booking limits scaled by meeting length
    - 🔁 Best-effort calendar and CRM sync behind circuit breakers
    - 💬 Chat and voice channels over the same booking operations
    """,
    version="1.0.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Booking error -> HTTP status
ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    FrequencyLimitExceeded: status.HTTP_429_TOO_MANY_REQUESTS,
    StoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
    SessionBusyError: status.HTTP_409_CONFLICT,
}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "detail": exc.errors(),
        },
    )


@app.exception_handler(BookingError)
async def booking_exception_handler(
    request: Request,
    exc: BookingError,
) -> JSONResponse:
    """Map booking errors to status codes."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    content: dict = {"error": exc.code, "detail": exc.message}

    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    elif isinstance(exc, ConflictError):
        content["alternatives"] = [slot.to_dict() for slot in exc.alternatives]
    elif isinstance(exc, FrequencyLimitExceeded):
        content["limit"] = exc.limit
        content["window_minutes"] = exc.window_minutes
    elif status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
        if not settings.is_development:
            content["detail"] = "Service temporarily unavailable"

    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    detail = str(exc) if settings.is_development else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": detail,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log request duration in debug mode."""
    start_time = time.time()

    try:
        return await call_next(request)
    finally:
        if settings.debug:
            duration = time.time() - start_time
            logger.debug(
                f"{request.method} {request.url.path} "
                f"completed in {duration:.3f}s"
            )


app.include_router(health.router)
app.include_router(chat.router)
app.include_router(voice.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """Service name plus the booking rules callers should expect."""
    hours = settings.business_hours
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "environment": settings.app_env,
        "business_hours": {
            "days": hours.days,
            "start": f"{hours.start_hour:02d}:00",
            "end": f"{hours.end_hour:02d}:00",
            "timezone": hours.timezone,
        },
        "durations": list(ALLOWED_DURATIONS),
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
