import logging

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from groupdate.config import Settings, get_settings
from groupdate.controllers.cron import router as cron_router
from groupdate.controllers.events import router as events_router
from groupdate.controllers.health import router as health_router
from groupdate.db.interfaces import SchedulingStore
from groupdate.errors import register_exception_handlers
from groupdate.lifespan import cleanup_resources, setup_resources
from groupdate.middleware import HTTPLogMiddleware


def create_app(
    settings: Settings | None = None,
    store: SchedulingStore | None = None,
    start_sweeper: bool | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.resources = await setup_resources(settings, store=store, start_sweeper=start_sweeper)
        try:
            yield
        finally:
            await cleanup_resources(app.state.resources)

    app = FastAPI(title="groupdate", version="1.0.0", lifespan=lifespan)

    cors_regex = settings.cors.origins_regex or None
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.origins,
        allow_origin_regex=cors_regex,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.debug.request:
        logging.getLogger("groupdate.http").setLevel(logging.DEBUG)
        app.add_middleware(HTTPLogMiddleware)

    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(events_router)
    app.include_router(cron_router)
    return app


app = create_app()
