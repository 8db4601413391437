"""Application startup and shutdown.

Everything the request handlers need is built here once and stored on
``app.state.resources``; nothing is kept in module globals.
"""

import asyncio
import logging
from dataclasses import dataclass, field

import redis.asyncio as redis
from redis.asyncio import BlockingConnectionPool as RedisConnectionPool

from groupdate.auth import TrustedHeaderAuthProvider
from groupdate.bus import EventBus
from groupdate.cache import EventViewCache, LocalTTLCache
from groupdate.config import Settings, get_settings
from groupdate.db.core import Database
from groupdate.db.interfaces import SchedulingStore
from groupdate.db.scheduling import PostgresSchedulingStore
from groupdate.identity import IdentityService
from groupdate.scheduling import SchedulingService
from groupdate.sweeper import start_phase_sweeper

logger = logging.getLogger(__name__)


@dataclass
class LifespanResources:
    """Container for resources initialized during lifespan."""

    settings: Settings | None = None
    redis_client: redis.Redis | None = None
    database: Database | None = None
    store: SchedulingStore | None = None
    cache: EventViewCache | None = None
    identity: IdentityService | None = None
    bus: EventBus | None = None
    service: SchedulingService | None = None
    stop_event: asyncio.Event | None = None
    background_tasks: list[asyncio.Task] = field(default_factory=list)
    db_enabled: bool = False


async def init_redis(settings: Settings) -> redis.Redis:
    redis_pool = RedisConnectionPool(
        host=settings.redis.host,
        port=settings.redis.port,
        password=settings.redis.password if settings.redis.password else None,
        max_connections=settings.redis.max_connections,
        timeout=settings.redis.pool_timeout_sec,
        health_check_interval=settings.redis.health_check_interval,
        socket_timeout=settings.redis.socket_timeout,
        socket_connect_timeout=settings.redis.socket_connect_timeout,
        retry_on_timeout=settings.redis.retry_on_timeout,
        decode_responses=True,
    )
    candidate_client = redis.Redis(connection_pool=redis_pool, decode_responses=True)
    if hasattr(candidate_client, "__await__"):
        return await candidate_client
    return candidate_client


async def init_database(settings: Settings) -> Database | None:
    """Open the pool and migrate. Returns None when the database is disabled or unreachable."""
    if not settings.features.database:
        return None
    database = Database(settings.postgres)
    try:
        await database.open()
    except Exception as e:
        logger.warning("Failed to initialize database: %s", e)
        return None
    return database


def build_service(
    settings: Settings,
    store: SchedulingStore,
    redis_client: redis.Redis | None,
) -> tuple[EventViewCache, IdentityService, EventBus, SchedulingService]:
    cache = EventViewCache(
        redis_client,
        LocalTTLCache(settings.cache.local_max_entries),
        ttl_sec=settings.cache.view_ttl_sec,
        key_prefix=settings.cache.key_prefix,
    )
    identity = IdentityService(
        store,
        TrustedHeaderAuthProvider(settings.auth.user_header),
        token_secret=settings.auth.token_secret,
        session_cookie_prefix=settings.auth.session_cookie_prefix,
        person_cookie_prefix=settings.auth.person_cookie_prefix,
        session_header=settings.auth.session_header,
    )
    bus = EventBus(redis_client)
    service = SchedulingService(store, identity, cache, bus, settings)
    return cache, identity, bus, service


async def setup_resources(
    settings: Settings | None = None,
    store: SchedulingStore | None = None,
    start_sweeper: bool | None = None,
) -> LifespanResources:
    """Set up all shared resources.

    Args:
        settings: Defaults to ``get_settings()``.
        store: Use this store instead of PostgreSQL (tests).
        start_sweeper: Overrides ``PHASE_SWEEP_ENABLED``.
    """
    settings = settings or get_settings()
    resources = LifespanResources(settings=settings)
    resources.redis_client = await init_redis(settings)

    if store is None:
        resources.database = await init_database(settings)
        resources.db_enabled = resources.database is not None
        if resources.database is not None:
            store = PostgresSchedulingStore(resources.database)
    else:
        resources.db_enabled = True

    if store is None:
        logger.warning("No scheduling store available; event routes will return 503")
        return resources

    resources.store = store
    resources.cache, resources.identity, resources.bus, resources.service = build_service(
        settings, store, resources.redis_client
    )

    if settings.phase.sweep_enabled if start_sweeper is None else start_sweeper:
        resources.stop_event = asyncio.Event()
        resources.background_tasks.append(
            start_phase_sweeper(resources.service, resources.stop_event, settings.phase.sweep_interval_sec)
        )
    return resources


async def cleanup_resources(resources: LifespanResources) -> None:
    """Clean up all resources on shutdown."""
    if resources.background_tasks and resources.stop_event:
        resources.stop_event.set()
        try:
            await asyncio.wait_for(
                asyncio.gather(*resources.background_tasks, return_exceptions=True),
                timeout=5,
            )
        except asyncio.TimeoutError:
            for t in resources.background_tasks:
                t.cancel()
    resources.background_tasks.clear()

    if resources.database is not None:
        try:
            await resources.database.close()
        except Exception as e:
            logger.warning("Error closing database pool: %s", e)
        resources.database = None

    if resources.redis_client:
        aclose = getattr(resources.redis_client, "aclose", None)
        if callable(aclose):
            await aclose()
        else:
            close = getattr(resources.redis_client, "close", None)
            if callable(close):
                close()
        resources.redis_client = None

    resources.service = None
    resources.store = None
