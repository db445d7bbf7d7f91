"""
Health check endpoints.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import redis.asyncio as redis

from config import settings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns overall system health status.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown" if settings.VIEW_GUARD_BACKEND == "redis" else "not_used",
        "smtp": "configured" if settings.SMTP_HOST else "missing",
    }

    # Check database connection
    try:
        from database import engine
        from sqlalchemy import text
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        logger.error("health_database_down error=%s", e)
        health_status["database"] = "down"
        health_status["status"] = "degraded"

    # Redis only backs the view guard when that backend is selected
    if settings.VIEW_GUARD_BACKEND == "redis":
        try:
            r = redis.from_url(
                settings.REDIS_URL,
                socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
                socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
            )
            await r.ping()
            await r.close()
            health_status["redis"] = "up"
        except Exception as e:
            logger.error("health_redis_down error=%s", e)
            health_status["redis"] = "down"
            health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe."""
    missing = []
    if not settings.SMTP_HOST:
        missing.append("SMTP_HOST")
    if not settings.ADMIN_EMAIL:
        missing.append("ADMIN_EMAIL")

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
