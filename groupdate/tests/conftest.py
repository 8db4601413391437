import os
import sys
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

import pytest
from fastapi.testclient import TestClient
import fakeredis
import fakeredis.aioredis

import groupdate.lifespan as lifespan
from groupdate.auth import TrustedHeaderAuthProvider
from groupdate.bus import EventBus
from groupdate.cache import EventViewCache, LocalTTLCache
from groupdate.config import Settings
from groupdate.identity import IdentityService
from groupdate.main import create_app
from groupdate.scheduling import SchedulingService
from groupdate.tests.fakes import EVENT_ID, NOW, TOKEN_SECRET, InMemoryStore, make_event


class _AwaitableRedis:
    def __init__(self, client):
        self._client = client

    def __await__(self):
        async def _coro():
            return self._client

        return _coro().__await__()


@pytest.fixture
def store():
    s = InMemoryStore()
    s.add_event(make_event())
    for label in ("Alice", "Bob", "Carol"):
        s.add_identity(EVENT_ID, label)
    return s


@pytest.fixture
def fake_redis():
    return fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def settings():
    s = Settings()
    s.phase.sweep_enabled = False
    s.phase.allow_override = False
    s.auth.cron_secret = ""
    return s


@pytest.fixture
def identity(store):
    return IdentityService(store, TrustedHeaderAuthProvider(), token_secret=TOKEN_SECRET)


@pytest.fixture
def cache(fake_redis):
    return EventViewCache(fake_redis, LocalTTLCache(100), ttl_sec=120)


@pytest.fixture
def bus(fake_redis):
    return EventBus(fake_redis)


@pytest.fixture
def service(store, identity, cache, bus, settings):
    return SchedulingService(store, identity, cache, bus, settings, clock=lambda: NOW)


@pytest.fixture
def client(monkeypatch, store, settings):
    def fake_redis_constructor(*_args, **_kwargs):
        fake = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
        return _AwaitableRedis(fake)

    monkeypatch.setattr(lifespan.redis, "Redis", fake_redis_constructor)
    settings.auth.token_secret = TOKEN_SECRET

    with TestClient(create_app(settings, store=store, start_sweeper=False)) as c:
        yield c
