"""Shared pytest fixtures for the short-code pool tests."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from codepool.config import Settings
from codepool.generator import ShortCodeGenerator
from codepool.monitor import ShortCodePoolMonitor
from codepool.pool_manager import ShortCodePoolManager
from codepool.redis import RedisPoolStore
from tests.fakes import FakeRedis, FakeUrlRepository


@pytest.fixture
def settings() -> Settings:
    return Settings(
        LOG_LEVEL="DEBUG",
        SHORT_CODE_POOL_SIZE=200,
        SHORT_CODE_POOL_MIN_SIZE=50,
        SHORT_CODE_REPLENISH_THRESHOLD=20,
        SHORT_CODE_CRITICAL_THRESHOLD=5,
        SHORT_CODE_GENERATION_BATCH_SIZE=50,
        POOL_PUSH_BATCH_SIZE=25,
        REDIS_RETRY_BASE_DELAY_SECONDS=0,
        DATABASE_RETRY_BASE_DELAY_SECONDS=0,
        POOL_RETRIEVAL_RETRY_BASE_DELAY_SECONDS=0,
        POOL_MONITORING_INTERVAL_SECONDS=0.05,
    )


@pytest.fixture
def generator(settings: Settings) -> ShortCodeGenerator:
    return ShortCodeGenerator.from_settings(settings)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def repository() -> FakeUrlRepository:
    return FakeUrlRepository()


@pytest_asyncio.fixture
async def store(settings: Settings, generator: ShortCodeGenerator, fake_redis: FakeRedis) -> AsyncGenerator[RedisPoolStore, None]:
    pool_store = RedisPoolStore(settings, generator, client_factory=lambda: fake_redis)
    await pool_store.connect()
    yield pool_store
    await pool_store.disconnect()


@pytest.fixture
def disconnected_store(settings: Settings, generator: ShortCodeGenerator, fake_redis: FakeRedis) -> RedisPoolStore:
    return RedisPoolStore(settings, generator, client_factory=lambda: fake_redis)


@pytest.fixture
def manager(
    settings: Settings,
    generator: ShortCodeGenerator,
    store: RedisPoolStore,
    repository: FakeUrlRepository,
) -> ShortCodePoolManager:
    return ShortCodePoolManager(settings, generator, store, repository)


@pytest.fixture
def monitor(settings: Settings, manager: ShortCodePoolManager, store: RedisPoolStore) -> ShortCodePoolMonitor:
    return ShortCodePoolMonitor(settings, manager, store)
