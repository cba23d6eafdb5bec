"""Explicit wiring of the pool components.

Every component is constructed once at process start by
``PoolServices.build()`` and handed to its consumers explicitly. The
FastAPI app keeps the container on ``app.state``; tests build their own
container around fakes.

Dependency Graph
================
::
    Settings
       │
       ▼
    ShortCodeGenerator ──► RedisPoolStore ──┐
       │                                    ▼
       └──────────────► ShortCodePoolManager ◄── UrlRepository
                                    │
                                    ▼
                          ShortCodePoolMonitor
"""

from dataclasses import dataclass

from fastapi import Depends, Request

from codepool.config import Settings
from codepool.generator import ShortCodeGenerator
from codepool.logger import setup_logger
from codepool.monitor import ShortCodePoolMonitor
from codepool.pool_manager import ShortCodePoolManager
from codepool.redis import ClientFactory, RedisPoolStore
from codepool.repository import UrlRepository

__all__ = ["PoolServices", "get_pool_monitor", "get_pool_services"]


@dataclass
class PoolServices:
    settings: Settings
    generator: ShortCodeGenerator
    store: RedisPoolStore
    repository: UrlRepository
    manager: ShortCodePoolManager
    monitor: ShortCodePoolMonitor

    @classmethod
    def build(
        cls,
        settings: Settings,
        client_factory: ClientFactory | None = None,
        repository: UrlRepository | None = None,
    ) -> "PoolServices":
        generator = ShortCodeGenerator.from_settings(settings)
        store = RedisPoolStore(settings, generator, client_factory=client_factory)
        repository = repository or UrlRepository.from_settings(settings)
        manager = ShortCodePoolManager(settings, generator, store, repository)
        monitor = ShortCodePoolMonitor(settings, manager, store)
        return cls(
            settings=settings,
            generator=generator,
            store=store,
            repository=repository,
            manager=manager,
            monitor=monitor,
        )

    async def startup(self) -> None:
        """Connect stores, build the pool and start monitoring.

        A database outage only degrades reconciliation; an unreachable Redis
        fails startup.
        """
        logger = setup_logger(self.settings.APP_NAME, self.settings.LOG_LEVEL)
        if not await self.repository.connect():
            logger.warning("Starting without database; reconciliation will be skipped")
        await self.manager.initialize()
        await self.monitor.start_monitoring()
        logger.info("Short code pool services started")

    async def shutdown(self) -> None:
        await self.monitor.stop_monitoring()
        await self.manager.shutdown()
        await self.store.disconnect()
        await self.repository.close()


def get_pool_services(request: Request) -> PoolServices:
    return request.app.state.pool_services


def get_pool_monitor(services: PoolServices = Depends(get_pool_services)) -> ShortCodePoolMonitor:
    return services.monitor
