"""HTTP tests for the operational pool endpoints."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from codepool.config import Settings
from codepool.dependencies import PoolServices
from codepool.generator import ShortCodeGenerator
from codepool.monitor import ShortCodePoolMonitor
from codepool.pool_manager import ShortCodePoolManager
from codepool.redis import RedisPoolStore
from codepool.routes import router
from tests.fakes import FakeRedis, FakeUrlRepository


@pytest.fixture
def services(
    settings: Settings,
    generator: ShortCodeGenerator,
    store: RedisPoolStore,
    repository: FakeUrlRepository,
    manager: ShortCodePoolManager,
    monitor: ShortCodePoolMonitor,
) -> PoolServices:
    return PoolServices(
        settings=settings,
        generator=generator,
        store=store,
        repository=repository,
        manager=manager,
        monitor=monitor,
    )


@pytest_asyncio.fixture
async def client(services: PoolServices) -> AsyncGenerator[AsyncClient, None]:
    app = FastAPI()
    app.include_router(router)
    app.state.pool_services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_ok(client: AsyncClient, fake_redis: FakeRedis, settings: Settings) -> None:
    fake_redis.lists[settings.SHORT_CODE_POOL_KEY] = ["abcde"] * 100

    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["cache"] == "healthy"
    assert body["database"] == "healthy"
    assert body["short_code_pool"] == "adequate"
    assert body["pool_size"] == 100


@pytest.mark.asyncio
async def test_health_reports_low_pool(client: AsyncClient, fake_redis: FakeRedis, settings: Settings) -> None:
    fake_redis.lists[settings.SHORT_CODE_POOL_KEY] = ["abcde"] * 3

    body = (await client.get("/health")).json()

    assert body["short_code_pool"] == "critical"


@pytest.mark.asyncio
async def test_health_503_when_redis_down(client: AsyncClient, store: RedisPoolStore) -> None:
    await store.disconnect()

    response = await client.get("/health")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "degraded"
    assert body["cache"] == "unhealthy"
    assert body["short_code_pool"] == "unhealthy"


@pytest.mark.asyncio
async def test_health_503_when_database_down(client: AsyncClient, repository: FakeUrlRepository) -> None:
    repository.error = OperationalError("SELECT 1", {}, Exception("connection refused"))

    response = await client.get("/health")

    assert response.status_code == 503
    assert response.json()["database"] == "unhealthy"


@pytest.mark.asyncio
async def test_pool_level(client: AsyncClient, fake_redis: FakeRedis, settings: Settings) -> None:
    fake_redis.lists[settings.SHORT_CODE_POOL_KEY] = ["abcde"] * 10

    body = (await client.get("/api/pool/level")).json()

    assert body["status"] == "success"
    assert body["level"] == "low"
    assert body["recommendation"] == "schedule_replenishment"
    assert body["thresholds"] == {"critical": 5, "replenish": 20}


@pytest.mark.asyncio
async def test_pool_statistics(client: AsyncClient, fake_redis: FakeRedis, settings: Settings) -> None:
    fake_redis.lists[settings.SHORT_CODE_POOL_KEY] = ["abcde"] * 42

    response = await client.get("/api/pool/statistics")

    assert response.status_code == 200
    body = response.json()
    assert body["store"]["pool_size"] == 42
    assert body["pool"]["target_size"] == settings.SHORT_CODE_POOL_SIZE
    assert body["code_space"]["max_possible_codes"] == 62**5


@pytest.mark.asyncio
async def test_pool_status(client: AsyncClient, fake_redis: FakeRedis, settings: Settings) -> None:
    fake_redis.lists[settings.SHORT_CODE_POOL_KEY] = ["abcde"] * 100

    body = (await client.get("/api/pool/status")).json()

    assert body["health"]["status"] == "healthy"
    assert body["statistics"]["store"]["pool_size"] == 100
    assert body["metrics"]["thresholds"]["replenish"] == 20


@pytest.mark.asyncio
async def test_reset_metrics(client: AsyncClient, monitor: ShortCodePoolMonitor) -> None:
    monitor.record_retrieval("fallback")

    response = await client.post("/api/pool/metrics/reset")

    assert response.status_code == 200
    assert response.json()["retrieval_count"] == 0
    assert monitor.metrics.fallback_count == 0
