"""
Health check and monitoring endpoints
"""
import time
from datetime import datetime

import redis
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.obs.errors import StorageError
from app.obs.logging import get_logger
from app.services.storage import StorageService, get_storage_service

router = APIRouter(tags=["health"])
logger = get_logger(__name__)

VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": VERSION,
        "environment": settings.ENVIRONMENT
    }


@router.get("/health/detailed")
async def detailed_health_check(
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
):
    """Detailed health check with all dependencies"""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {}
    }

    # Check database
    start_time = time.time()
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {
            "status": "healthy",
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
        }
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        health_status["checks"]["database"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "unhealthy"

    # Check object storage; the bucket may be unreachable while the catalog still serves
    if storage.is_configured:
        start_time = time.time()
        try:
            await storage.file_exists(".healthcheck")
            health_status["checks"]["storage"] = {
                "status": "healthy",
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
            }
        except StorageError as e:
            health_status["checks"]["storage"] = {"status": "unhealthy", "error": e.message}
            health_status["status"] = "degraded"
    else:
        health_status["checks"]["storage"] = {"status": "not_configured"}

    # Check Redis only when it backs the rate limiter
    if settings.uses_redis_rate_limiting():
        try:
            start_time = time.time()
            redis.from_url(settings.REDIS_URL).ping()
            health_status["checks"]["redis"] = {
                "status": "healthy",
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
            }
        except redis.RedisError as e:
            # Limiter fails open, so Redis trouble only degrades the service
            health_status["checks"]["redis"] = {"status": "unhealthy", "error": str(e)}
            if health_status["status"] == "healthy":
                health_status["status"] = "degraded"
    else:
        health_status["checks"]["redis"] = {"status": "not_used"}

    health_status["checks"]["rate_limiter"] = {"backend": type(request.app.state.rate_limiter).__name__}
    return health_status


@router.get("/health/live")
async def liveness_check():
    """Kubernetes liveness probe"""
    return {"status": "alive"}
