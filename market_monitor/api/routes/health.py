"""
Health check endpoint with infrastructure checks.
"""

import time

import structlog
from fastapi import APIRouter, Depends

from market_monitor.api.dependencies import get_database
from market_monitor.api.models import ComponentHealth, HealthResponse
from market_monitor.config.settings import get_settings
from market_monitor.storage.database import Database

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _check_database(db: Database) -> ComponentHealth:
    """Check database connectivity and measure latency."""
    start = time.perf_counter()
    try:
        healthy = await db.health_check()
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="healthy" if healthy else "unhealthy",
            latency_ms=round(latency_ms, 2),
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="unhealthy",
            latency_ms=round(latency_ms, 2),
            details={"error": str(e)},
        )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health",
    description="Database connectivity plus which notification channels are configured.",
)
async def health(db: Database = Depends(get_database)) -> HealthResponse:
    settings = get_settings()
    database = await _check_database(db)

    channels = {
        "mail": settings.mail_configured,
        "push": settings.push_configured,
        "chat": settings.chat_configured,
    }

    if database.status != "healthy":
        overall = "unhealthy"
    elif not any(channels.values()):
        overall = "degraded"
    else:
        overall = "healthy"

    if overall != "healthy":
        logger.warning("Health check not healthy", status=overall)

    return HealthResponse(
        status=overall,
        components={"database": database},
        channels=channels,
    )
