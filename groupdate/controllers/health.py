import logging
from typing import Any

from fastapi import APIRouter

from groupdate.dependencies import OptionalRedis, Resources

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health(resources: Resources, redis_client: OptionalRedis) -> dict[str, Any]:
    redis_status = "disconnected"
    if redis_client:
        try:
            await redis_client.ping()
            redis_status = "healthy"
        except Exception as e:
            logger.warning("Redis health check failed: %r", e)
            redis_status = "unhealthy"

    return {
        "status": "ok" if resources.service is not None else "degraded",
        "redis": redis_status,
        "database": resources.database.pool_stats() if resources.database else {"status": "disabled"},
        "cache": resources.cache.stats() if resources.cache else None,
    }
