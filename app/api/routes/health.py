"""
Health Check Endpoints

Liveness, readiness and integration probes. Readiness follows the booking
store; calendar and CRM health is reported separately because their
outages never block a booking.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.core.services import get_services
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

# Track application start time for uptime calculation
_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Set application start time. Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    """Get application uptime in seconds."""
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    """Basic health check response."""
    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadyResponse(BaseModel):
    """Readiness check response with dependency status."""
    status: str
    timestamp: datetime
    checks: dict[str, str]


class LiveResponse(BaseModel):
    """Liveness check response."""
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the application is running. Does not check dependencies.",
)
async def health() -> HealthResponse:
    """Process is up. See /health/ready for the booking store."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        environment=settings.app_env,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    description=(
        "Checks database and Redis connectivity. Returns 503 if the booking "
        "database is unavailable; Redis being down only degrades sessions."
    ),
    responses={
        200: {"description": "Bookings can be served"},
        503: {"description": "The booking database is unavailable"},
    },
)
async def ready() -> ReadyResponse:
    """
    Readiness probe.

    Only the booking store gates readiness: it is where conflicts and
    limits are decided. The in-memory store reports "memory".
    """
    checks: dict[str, str] = {}
    store_ok = True

    if settings.booking_store == "sql":
        store_ok = await check_db_health()
        checks["database"] = "ok" if store_ok else "failed"
        if not store_ok:
            logger.warning("Readiness check: booking database unreachable")
    else:
        checks["database"] = "memory"

    if await check_redis_health():
        checks["redis"] = "ok"
    else:
        checks["redis"] = "degraded"
        logger.warning("Readiness check: Redis unavailable, sessions in memory")

    response = ReadyResponse(
        status="ready" if store_ok else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )

    if not store_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
    description="Returns 200 if the process is alive. Used for container restart decisions.",
)
async def live() -> LiveResponse:
    """Always 200 while the process runs."""
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )


class IntegrationsResponse(BaseModel):
    """Integration health: breaker state per dependency and sync backlog."""
    status: str
    timestamp: datetime
    dependencies: dict[str, dict]
    sync: dict[str, Any]


@router.get(
    "/integrations",
    response_model=IntegrationsResponse,
    summary="Integration health",
    description="Circuit breaker state per external dependency and failed sync count.",
)
async def integrations() -> IntegrationsResponse:
    """
    Integration health.

    Always 200: integrations are best-effort, so an open breaker degrades
    sync but never availability. ``status`` is "degraded" when any breaker
    is not closed or any sync task has failed.
    """
    services = get_services()

    dependencies = {}
    if services.calendar is not None:
        dependencies["calendar"] = services.calendar.stats()
    if services.crm is not None:
        dependencies["crm"] = services.crm.stats()

    sync = services.outbox.stats()
    degraded = sync.get("failed", 0) > 0 or any(
        dep.get("state") != "closed" for dep in dependencies.values()
    )

    return IntegrationsResponse(
        status="degraded" if degraded else "ok",
        timestamp=datetime.now(timezone.utc),
        dependencies=dependencies,
        sync=sync,
    )
