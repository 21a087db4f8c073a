"""Health check endpoints."""
import logging

from fastapi import APIRouter

from ..core.cache import cache
from ..core.config import settings
from ..core.database import health_check_db
from ..utils.scheduling import utcnow

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health_check():
    """Basic health check"""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@router.get("/full")
async def full_health_check():
    """Database and cache checks; a disabled cache does not degrade the service"""
    db_healthy = await health_check_db()
    if not cache.enabled:
        cache_status = "disabled"
    else:
        cache_status = "healthy" if await cache.ping() else "unhealthy"

    components = {
        "service": "healthy",
        "database": "healthy" if db_healthy else "unhealthy",
        "cache": cache_status,
    }
    overall = "healthy" if db_healthy and cache_status != "unhealthy" else "degraded"
    if overall != "healthy":
        logger.warning(f"Health check degraded: {components}")

    return {
        "status": overall,
        "components": components,
        "timestamp": utcnow().isoformat(),
    }
