"""Dependency injection for FastAPI endpoints.

Resources are built by the lifespan and stored on ``app.state.resources``;
these dependencies hand them to the controllers.

Usage in controllers:
    from groupdate.dependencies import Service

    @router.get("/events/{token}")
    async def get_event(token: str, service: Service):
        ...
"""

from typing import Annotated

import redis.asyncio as redis
from fastapi import Depends, Request

from groupdate.errors import ServiceUnavailableError
from groupdate.lifespan import LifespanResources
from groupdate.scheduling import SchedulingService


def get_resources(request: Request) -> LifespanResources:
    resources = getattr(request.app.state, "resources", None)
    if resources is None:
        raise ServiceUnavailableError(detail="Application is not initialized")
    return resources


def get_optional_redis(request: Request) -> redis.Redis | None:
    resources = getattr(request.app.state, "resources", None)
    return resources.redis_client if resources else None


def get_scheduling_service(request: Request) -> SchedulingService:
    """Raises ServiceUnavailableError when no store could be opened."""
    service = get_resources(request).service
    if service is None:
        raise ServiceUnavailableError(detail="Scheduling store not available")
    return service


Resources = Annotated[LifespanResources, Depends(get_resources)]
OptionalRedis = Annotated[redis.Redis | None, Depends(get_optional_redis)]
Service = Annotated[SchedulingService, Depends(get_scheduling_service)]
