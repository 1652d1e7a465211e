"""Integration test fixtures (service checks and a fully wired app).

The scanner service runs with an in-process worker over FakeEngine and an
in-memory Redis stand-in unless a test asks for the real Redis.
"""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from redis import Redis
from redis.asyncio import Redis as AsyncRedis

from mailguard.service import ScannerService
from tests.fixtures.fakes import EngineRecorder, FakeAsyncRedis, StaticSampler

REAL_REDIS_URL = "redis://localhost:6379/15"


@pytest.fixture(scope="session")
def check_redis():
    """Check if Redis is available at localhost:6379.

    Skips tests if Redis is not reachable.
    """
    try:
        client = Redis.from_url(REAL_REDIS_URL)
        client.ping()
        client.close()
    except Exception as e:
        pytest.skip(f"Redis not available: {e}")


@pytest_asyncio.fixture
async def real_async_redis_client(check_redis):
    """Real AsyncRedis client on a scratch database, flushed after the test."""
    client = AsyncRedis.from_url(REAL_REDIS_URL, decode_responses=True)
    yield client
    await client.flushdb()
    await client.aclose()


@pytest.fixture
def wired(monkeypatch, test_settings, engine_recorder, fake_redis):
    """
    Patch the app's ScannerService so startup builds a fully in-process pipeline.

    Yields (recorder, redis, sampler) for assertions.
    """
    sampler = StaticSampler(available_memory_mb=16000)
    def build_service(settings):
        service = ScannerService(
            test_settings,
            redis_client=fake_redis,
            engine_factory=engine_recorder,
            sampler=sampler,
        )
        return service

    monkeypatch.setattr("mailguard.main.ScannerService", build_service)
    return engine_recorder, fake_redis, sampler


@pytest.fixture
def api_client(wired):
    from mailguard.main import app

    with TestClient(app) as client:
        yield client
