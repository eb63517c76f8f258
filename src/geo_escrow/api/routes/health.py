"""Health check endpoint.

Verifies connectivity to the database and Redis, returns structured status.
Used by container healthchecks and load balancers.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text

from geo_escrow.infrastructure.database.engine import get_engine
from geo_escrow.infrastructure.redis_client import get_redis
from geo_escrow.logging_config import get_logger
from geo_escrow.schemas.transfers import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check() -> HealthResponse:
    """Check connectivity to the database and Redis."""
    db_status = "unknown"
    redis_status = "unknown"

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    try:
        await get_redis().ping()
        redis_status = "healthy"
    except Exception as exc:
        redis_status = f"unhealthy: {exc}"
        logger.error("health.redis_check_failed", error=str(exc))

    overall = "ok" if db_status == "healthy" and redis_status == "healthy" else "degraded"
    return HealthResponse(status=overall, database=db_status, redis=redis_status)
