"""Health check endpoints for the Antistatic API.

Provides system health status including the database connection and scheduler status.
"""

import time
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from antistatic import __version__
from antistatic.api.dependencies import get_supabase
from antistatic.api.models import HealthCheckResponse, HealthStatus

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])

# Track server start time for uptime calculation
_server_start_time: Optional[float] = None


def set_server_start_time() -> None:
    """Set the server start time. Called on application startup."""
    global _server_start_time
    _server_start_time = time.time()


def get_uptime_seconds() -> Optional[float]:
    """Get server uptime in seconds."""
    if _server_start_time is None:
        return None
    return time.time() - _server_start_time


async def check_supabase_health(supabase: Client) -> HealthStatus:
    """Check Supabase database connectivity."""
    start_time = time.time()
    try:
        supabase.table("business_locations").select("id").limit(1).execute()
        latency = (time.time() - start_time) * 1000

        return HealthStatus(
            status="healthy",
            latency_ms=round(latency, 2),
            message="Connected to Supabase",
        )
    except Exception as e:
        latency = (time.time() - start_time) * 1000
        logger.error("supabase_health_check_failed", error=str(e))
        return HealthStatus(
            status="unhealthy",
            latency_ms=round(latency, 2),
            message=f"Supabase connection failed: {str(e)[:100]}",
        )


async def check_scheduler_health() -> HealthStatus:
    """Check scheduler status."""
    from antistatic.api.dependencies import get_scheduler

    try:
        scheduler = get_scheduler()
    except RuntimeError:
        return HealthStatus(status="degraded", message="Scheduler is disabled")

    if scheduler.is_running:
        return HealthStatus(status="healthy", message="Scheduler is running")
    return HealthStatus(status="degraded", message="Scheduler is not running")


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health Check",
    description="Check the health status of the API and its dependencies.",
)
async def health_check(supabase: Client = Depends(get_supabase)) -> HealthCheckResponse:
    """Status of Supabase and the background scheduler."""
    services = {
        "supabase": await check_supabase_health(supabase),
        "scheduler": await check_scheduler_health(),
    }

    statuses = [s.status for s in services.values()]
    if all(s == "healthy" for s in statuses):
        overall_status = "healthy"
    elif any(s == "unhealthy" for s in statuses):
        overall_status = "unhealthy"
    else:
        overall_status = "degraded"

    return HealthCheckResponse(
        status=overall_status,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        services=services,
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/health/live",
    summary="Liveness Check",
    description="Simple liveness check for container orchestration.",
)
async def liveness() -> dict:
    """Returns 200 if the service is alive."""
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get(
    "/health/ready",
    summary="Readiness Check",
    description="Check if the service is ready to accept traffic.",
)
async def readiness(supabase: Client = Depends(get_supabase)) -> dict:
    """Returns 200 only if the database is reachable."""
    supabase_status = await check_supabase_health(supabase)

    if supabase_status.status == "unhealthy":
        raise HTTPException(
            status_code=503,
            detail="Service not ready: database unavailable",
        )

    return {"status": "ready", "timestamp": datetime.now(timezone.utc).isoformat()}
