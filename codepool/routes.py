"""Operational HTTP endpoints for the short-code pool.

Endpoints:
    /health:  Liveness/readiness with Redis, database and pool level.
    /api/pool/level:  Side-effect free pool level probe.
    /api/pool/status:  Health verdict, statistics and metrics in one payload.
    /api/pool/statistics:  Aggregated pool statistics snapshot.
    /api/pool/metrics/reset:  Reset in-process pool metrics.

Key Behaviours
===============
- /health answers 503 when any dependency is unhealthy.
- /health and /api/pool/level never start replenishment themselves.
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import SQLAlchemyError

from codepool.dependencies import PoolServices, get_pool_monitor, get_pool_services
from codepool.enums import HealthStatus
from codepool.monitor import ShortCodePoolMonitor
from codepool.redis import TRANSPORT_ERRORS, PoolStoreError
from codepool.schemas import DetailedStatus, HealthResponse, MonitorMetrics, PoolLevelResult, PoolStatistics

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    response: Response,
    services: PoolServices = Depends(get_pool_services),
) -> HealthResponse:
    logger = services.monitor.logger
    cache_status = HealthStatus.HEALTHY
    db_status = HealthStatus.HEALTHY
    pool_level = HealthStatus.UNHEALTHY.value
    pool_size = None

    try:
        await services.store.health_check()
        level = await services.monitor.check_pool_level()
        if level.level is not None:
            pool_level = level.level.value
        pool_size = level.pool_size
    except (PoolStoreError, *TRANSPORT_ERRORS) as e:
        logger.error(f"Cache health check failed: {e!r}")
        cache_status = HealthStatus.UNHEALTHY

    try:
        await services.repository.health_check()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e!r}")
        db_status = HealthStatus.UNHEALTHY

    overall = HealthStatus.HEALTHY
    if HealthStatus.UNHEALTHY in (cache_status, db_status):
        overall = HealthStatus.DEGRADED
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        database=db_status,
        cache=cache_status,
        short_code_pool=pool_level,
        pool_size=pool_size,
    )


@router.get("/api/pool/level", response_model=PoolLevelResult, tags=["pool"])
async def pool_level(monitor: ShortCodePoolMonitor = Depends(get_pool_monitor)) -> PoolLevelResult:
    return await monitor.check_pool_level()


@router.get("/api/pool/status", response_model=DetailedStatus, tags=["pool"])
async def pool_status(monitor: ShortCodePoolMonitor = Depends(get_pool_monitor)) -> DetailedStatus:
    return await monitor.get_detailed_status()


@router.get("/api/pool/statistics", response_model=PoolStatistics, tags=["pool"])
async def pool_statistics(services: PoolServices = Depends(get_pool_services)) -> PoolStatistics:
    return await services.manager.get_pool_statistics()


@router.post("/api/pool/metrics/reset", response_model=MonitorMetrics, tags=["pool"])
async def reset_pool_metrics(monitor: ShortCodePoolMonitor = Depends(get_pool_monitor)) -> MonitorMetrics:
    monitor.reset_metrics()
    return monitor.get_metrics()
