"""Periodic health monitoring and replenishment triggering for the pool.

Flow Diagram — perform_health_check()
=====================================
::
    ┌─────────────┐
    │ get_pool_   │──fail──► UNHEALTHY (error recorded)
    │ statistics()│
    └──────┬──────┘
           ▼
    ┌─────────────┐  no   ┌───────────┐
    │ Redis       ├──────►│ UNHEALTHY │
    │ connected?  │       └───────────┘
    └──────┬──────┘
        yes│
           ▼
    ┌─────────────┐  <= critical  ┌──────────┐
    │ Pool size   ├──────────────►│ CRITICAL │──┐
    └──────┬──────┘               └──────────┘  │
           │ <= replenish          ┌──────────┐  │ replenish in
           ├──────────────────────►│ WARNING  │──┤ background
           │                       └──────────┘  │ (unless already
           ▼                                     │  running)
    ┌─────────────┐  db down  ┌──────────┐       │
    │ HEALTHY     ├──────────►│ DEGRADED │       ▼
    └─────────────┘           └──────────┘   check_and_
                                             replenish_pool()

How to Use
===========
**Step 1 — Build and start**::
    monitor = ShortCodePoolMonitor(settings, manager, store)
    await monitor.start_monitoring()

**Step 2 — Record retrievals from the URL-creation path**::
    result = await store.get_short_code()
    monitor.record_retrieval(result.source)

**Step 3 — Stop on shutdown**::
    await monitor.stop_monitoring()

Key Behaviours
===============
- Nothing raised inside a health check escapes to the periodic loop.
- Replenishment runs as a background task; the health check never waits
  for it.
- stop_monitoring() ends the loop between checks; a check already in
  flight is allowed to finish.
- Metrics live in process memory and reset only through reset_metrics().
"""

import asyncio
import datetime
import time
from collections import deque
from dataclasses import dataclass, field

from prometheus_client import Counter

from codepool.config import Settings
from codepool.enums import CodeSource, PoolHealthStatus, PoolLevel, PoolRecommendation
from codepool.logger import setup_logger
from codepool.pool_manager import ShortCodePoolManager
from codepool.redis import RedisPoolStore
from codepool.schemas import (
    DetailedStatus,
    ErrorRecord,
    HealthCheckResult,
    MonitoringInfo,
    MonitorMetrics,
    PoolLevelResult,
    PoolThresholds,
    PopulateResult,
    utcnow,
)

__all__ = ["PoolMetrics", "ShortCodePoolMonitor"]

HEALTH_CHECKS_TOTAL = Counter(
    "short_code_pool_health_checks_total",
    "Pool health checks performed, by resulting status",
    ["status"],
)


@dataclass
class PoolMetrics:
    """Process-wide counters for pool usage."""

    pool_size: int = 0
    retrieval_count: int = 0
    fallback_count: int = 0
    replenishment_count: int = 0
    last_replenishment: datetime.datetime | None = None
    errors: deque[ErrorRecord] = field(default_factory=lambda: deque(maxlen=10))

    @property
    def fallback_rate(self) -> float:
        if self.retrieval_count == 0:
            return 0.0
        return self.fallback_count / self.retrieval_count * 100


class ShortCodePoolMonitor:
    def __init__(self, settings: Settings, manager: ShortCodePoolManager, store: RedisPoolStore) -> None:
        self.manager = manager
        self.store = store
        self.logger = setup_logger("short-code-pool-monitor", settings.LOG_LEVEL)

        self.monitoring_interval = settings.POOL_MONITORING_INTERVAL_SECONDS
        self.replenish_threshold = settings.SHORT_CODE_REPLENISH_THRESHOLD
        self.critical_threshold = settings.SHORT_CODE_CRITICAL_THRESHOLD
        self._error_history_size = settings.POOL_ERROR_HISTORY_SIZE

        self.metrics = self._new_metrics()
        self.last_health_check: HealthCheckResult | None = None
        self._loop_task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._background_tasks: set[asyncio.Task] = set()

    def _new_metrics(self) -> PoolMetrics:
        return PoolMetrics(errors=deque(maxlen=self._error_history_size))

    @property
    def thresholds(self) -> PoolThresholds:
        return PoolThresholds(critical=self.critical_threshold, replenish=self.replenish_threshold)

    @property
    def is_monitoring(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start_monitoring(self) -> None:
        if self.is_monitoring:
            self.logger.debug("Monitoring already active")
            return

        self.logger.info(f"Starting pool monitoring: interval={self.monitoring_interval}s")
        self._stop_event = asyncio.Event()
        await self.perform_health_check()
        self._loop_task = asyncio.create_task(self._run_loop(), name="short-code-pool-monitor")
        self.logger.info("Pool monitoring started")

    async def stop_monitoring(self) -> None:
        if not self.is_monitoring:
            self.logger.debug("Monitoring not active")
            return

        self.logger.info("Stopping pool monitoring...")
        loop_task, self._loop_task = self._loop_task, None
        self._stop_event.set()
        await loop_task
        self.logger.info("Pool monitoring stopped")

    async def _run_loop(self) -> None:
        stop_event = self._stop_event
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.monitoring_interval)
            except asyncio.TimeoutError:
                try:
                    await self.perform_health_check()
                except Exception as e:
                    self.logger.error(f"Error during periodic health check: {e!r}")

    # ========================================================================
    # HEALTH CHECKS
    # ========================================================================

    async def perform_health_check(self) -> HealthCheckResult:
        start = time.perf_counter()
        try:
            result = await self._evaluate(start)
        except Exception as e:
            self.logger.error(f"Health check failed with exception: {e!r}")
            self.record_error(e)
            result = HealthCheckResult(
                status=PoolHealthStatus.UNHEALTHY,
                error=str(e),
                response_time_ms=(time.perf_counter() - start) * 1000,
            )

        self.last_health_check = result
        HEALTH_CHECKS_TOTAL.labels(status=result.status.value).inc()
        return result

    async def _evaluate(self, start: float) -> HealthCheckResult:
        try:
            stats = await self.manager.get_pool_statistics()
        except Exception as e:
            self.logger.error(f"Failed to get pool statistics during health check: {e!r}")
            self.record_error(e)
            return HealthCheckResult(
                status=PoolHealthStatus.UNHEALTHY,
                error=str(e),
                response_time_ms=(time.perf_counter() - start) * 1000,
            )

        pool_size = stats.store.pool_size
        self.metrics.pool_size = pool_size
        alerts: list[str] = []
        actions: list[str] = []

        if not stats.store.connected:
            status = PoolHealthStatus.UNHEALTHY
            alerts.append("Redis not connected")
        elif pool_size <= self.critical_threshold:
            status = PoolHealthStatus.CRITICAL
            alerts.append(f"Pool size critically low: {pool_size}")
            actions.append("immediate_replenishment_required")
        elif pool_size <= self.replenish_threshold:
            status = PoolHealthStatus.WARNING
            alerts.append(f"Pool size below threshold: {pool_size}")
            actions.append("replenishment_recommended")
        else:
            status = PoolHealthStatus.HEALTHY

        if not stats.database.connected:
            if status is PoolHealthStatus.HEALTHY:
                status = PoolHealthStatus.DEGRADED
            alerts.append("Database not connected")

        triggered = False
        if status.needs_replenishment and not stats.pool.is_replenishing:
            self.logger.info(
                f"Triggering pool replenishment: size={pool_size} threshold={self.replenish_threshold} "
                f"status={status}"
            )
            self._spawn(self.trigger_replenishment())
            triggered = True

        result = HealthCheckResult(
            status=status,
            pool_size=pool_size,
            alerts=alerts,
            actions=actions,
            replenishment_triggered=triggered,
            statistics=stats,
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

        if status is PoolHealthStatus.CRITICAL:
            self.logger.error(f"Pool health check: CRITICAL {alerts}")
        elif status is PoolHealthStatus.HEALTHY:
            self.logger.debug(f"Pool health check: HEALTHY size={pool_size} ({result.response_time_ms:.1f}ms)")
        else:
            self.logger.warning(f"Pool health check: {status.upper()} {alerts}")
        return result

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def trigger_replenishment(self) -> PopulateResult | None:
        self.metrics.replenishment_count += 1
        self.metrics.last_replenishment = utcnow()
        try:
            result = await self.manager.check_and_replenish_pool()
        except Exception as e:
            self.logger.error(f"Pool replenishment failed: {e!r}")
            self.record_error(e)
            return None
        self.logger.info("Pool replenishment completed")
        return result

    async def check_pool_level(self) -> PoolLevelResult:
        """Classify the pool fill level without starting any background work."""
        if not self.store.is_connected:
            return PoolLevelResult(status="error", error="Redis not connected", thresholds=self.thresholds)

        pool_size = await self.store.get_pool_size()
        if pool_size <= self.critical_threshold:
            level, recommendation = PoolLevel.CRITICAL, PoolRecommendation.IMMEDIATE_REPLENISHMENT
        elif pool_size <= self.replenish_threshold:
            level, recommendation = PoolLevel.LOW, PoolRecommendation.SCHEDULE_REPLENISHMENT
        else:
            level, recommendation = PoolLevel.ADEQUATE, PoolRecommendation.NONE

        return PoolLevelResult(
            status="success",
            pool_size=pool_size,
            level=level,
            recommendation=recommendation,
            thresholds=self.thresholds,
        )

    # ========================================================================
    # METRICS
    # ========================================================================

    def record_error(self, error: BaseException) -> None:
        self.metrics.errors.append(ErrorRecord(error=str(error), error_type=type(error).__name__))

    def record_retrieval(self, source: CodeSource | str) -> None:
        self.metrics.retrieval_count += 1
        if source == CodeSource.FALLBACK:
            self.metrics.fallback_count += 1

    def get_metrics(self) -> MonitorMetrics:
        return MonitorMetrics(
            pool_size=self.metrics.pool_size,
            retrieval_count=self.metrics.retrieval_count,
            fallback_count=self.metrics.fallback_count,
            replenishment_count=self.metrics.replenishment_count,
            last_replenishment=self.metrics.last_replenishment,
            errors=list(self.metrics.errors),
            fallback_rate=self.metrics.fallback_rate,
            monitoring=MonitoringInfo(
                is_active=self.is_monitoring,
                interval_seconds=self.monitoring_interval,
                last_health_check=self.last_health_check,
            ),
            thresholds=self.thresholds,
        )

    def reset_metrics(self) -> None:
        self.logger.info("Resetting pool metrics")
        self.metrics = self._new_metrics()

    async def get_detailed_status(self) -> DetailedStatus:
        status = DetailedStatus(metrics=self.get_metrics())
        try:
            status.statistics = await self.manager.get_pool_statistics()
        except Exception as e:
            status.statistics_error = str(e)
        status.health = await self.perform_health_check()
        status.metrics = self.get_metrics()
        return status
