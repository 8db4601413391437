"""Tests for startup and shutdown of shared resources."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from groupdate.cache import EventViewCache
from groupdate.lifespan import (
    LifespanResources,
    build_service,
    cleanup_resources,
    init_database,
    init_redis,
    setup_resources,
)
from groupdate.scheduling import SchedulingService


class TestLifespanResources:
    def test_defaults(self):
        resources = LifespanResources()
        assert resources.redis_client is None
        assert resources.service is None
        assert resources.stop_event is None
        assert resources.background_tasks == []
        assert resources.db_enabled is False


class TestInitRedis:
    @pytest.mark.asyncio
    async def test_creates_client(self, settings):
        mock_client = MagicMock()
        with patch("groupdate.lifespan.redis.Redis", return_value=mock_client) as mock_redis_class:
            result = await init_redis(settings)
        assert result is mock_client
        mock_redis_class.assert_called_once()
        assert mock_redis_class.call_args.kwargs["decode_responses"] is True


class TestInitDatabase:
    @pytest.mark.asyncio
    async def test_disabled(self, settings):
        settings.features.database = False
        assert await init_database(settings) is None

    @pytest.mark.asyncio
    async def test_opens_and_migrates(self, settings):
        with patch("groupdate.lifespan.Database") as mock_db_class:
            mock_db_class.return_value.open = AsyncMock()
            database = await init_database(settings)
        assert database is mock_db_class.return_value
        database.open.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unreachable_database_is_none(self, settings):
        with patch("groupdate.lifespan.Database") as mock_db_class:
            mock_db_class.return_value.open = AsyncMock(side_effect=OSError("connection refused"))
            assert await init_database(settings) is None


class TestSetupResources:
    @pytest.mark.asyncio
    async def test_with_injected_store(self, settings, store, fake_redis):
        with patch("groupdate.lifespan.init_redis", new_callable=AsyncMock, return_value=fake_redis):
            resources = await setup_resources(settings, store=store, start_sweeper=False)
        assert resources.redis_client is fake_redis
        assert resources.db_enabled is True
        assert isinstance(resources.service, SchedulingService)
        assert isinstance(resources.cache, EventViewCache)
        assert resources.service.store is store
        assert resources.background_tasks == []

    @pytest.mark.asyncio
    async def test_without_store(self, settings):
        settings.features.database = False
        with patch("groupdate.lifespan.init_redis", new_callable=AsyncMock, return_value=None):
            resources = await setup_resources(settings)
        assert resources.service is None
        assert resources.db_enabled is False

    @pytest.mark.asyncio
    async def test_sweeper_started_and_stopped(self, settings, store):
        with patch("groupdate.lifespan.init_redis", new_callable=AsyncMock, return_value=None):
            resources = await setup_resources(settings, store=store, start_sweeper=True)
        assert len(resources.background_tasks) == 1
        task = resources.background_tasks[0]
        await asyncio.sleep(0)

        await cleanup_resources(resources)
        assert task.done()
        assert resources.background_tasks == []


def test_build_service_wires_cache_settings(settings, store):
    settings.cache.view_ttl_sec = 30
    settings.cache.key_prefix = "views"
    cache, identity, bus, service = build_service(settings, store, None)
    assert cache.ttl_sec == 30
    assert cache.key_prefix == "views"
    assert cache.shared is None
    assert service.identity is identity
    assert service.bus is bus


class TestCleanupResources:
    @pytest.mark.asyncio
    async def test_closes_redis_and_database(self):
        mock_redis = MagicMock()
        mock_redis.aclose = AsyncMock()
        database = MagicMock()
        database.close = AsyncMock()
        resources = LifespanResources(redis_client=mock_redis, database=database)

        await cleanup_resources(resources)

        mock_redis.aclose.assert_awaited_once()
        database.close.assert_awaited_once()
        assert resources.redis_client is None
        assert resources.database is None
