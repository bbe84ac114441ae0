"""Health check endpoints for load balancers and monitoring."""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from abacatrack.config import settings
from abacatrack.database import utcnow
from abacatrack.routers.deps import get_db_engine
from abacatrack.utils.cache import get_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight health check for load balancer (no DB/Redis check)."""
    return {
        "status": "ok",
        "service": "AbacaTrack",
        "timestamp": utcnow().isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check(engine: AsyncEngine = Depends(get_db_engine)):
    """Readiness check: the database must answer; Redis is reported but optional.

    Reports degrade to uncached reads without Redis, so a Redis outage does
    not take the service out of rotation.
    """
    checks = {
        "service": "ok",
        "database": "unknown",
        "redis": "disabled",
    }
    healthy = True

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {str(e)[:100]}"
        healthy = False

    if settings.report_cache_enabled:
        try:
            redis_client = await get_redis()
            await redis_client.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {str(e)[:100]}"

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "service": "AbacaTrack",
            "checks": checks,
            "timestamp": utcnow().isoformat(),
        },
    )
