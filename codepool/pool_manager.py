"""Pool lifecycle: startup, reconciliation, population and replenishment.

The manager ties the generator, the Redis pool store and the durable URL
store together. It decides how many codes to generate, keeps codes that are
already assigned out of the pool, and tops the pool up when it runs low.

Flow Diagram — initialize()
===========================
::
    ┌─────────────┐
    │ initialize()│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Connect      │──fail──► raise (fatal at startup)
    │ Redis        │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ LLEN pool    │
    └──────┬──────┘
    < min? │
    ┌─────┴─────┐
    │ YES        │ NO
    ▼            ▼
┌──────────┐ ┌──────────┐
│ reconcile│ │ reconcile│
│ + populate│ │ only     │
└──────────┘ └──────────┘

Flow Diagram — check_and_replenish_pool()
=========================================
::
    ┌─────────────┐  yes
    │ Replenishing├──────► skip
    └──────┬──────┘
         no│
           ▼
    ┌─────────────┐  no
    │ size <=     ├──────► nothing to do
    │ threshold?  │
    └──────┬──────┘
        yes│
           ▼
    ┌─────────────┐
    │ flag = True  │
    │ populate()   │
    │ finally:     │
    │ flag = False │
    └─────────────┘

How to Use
===========
**Step 1 — Build**::
    manager = ShortCodePoolManager(settings, generator, store, repository)

**Step 2 — Startup**::
    await manager.initialize()

**Step 3 — Periodic maintenance (usually via the monitor)**::
    await manager.check_and_replenish_pool()

Key Behaviours
===============
- initialize() is idempotent and propagates connection and reconciliation
  failures so a broken startup fails fast.
- A disconnected database is probed with SELECT 1 before used codes are
  skipped, so reconciliation resumes once the database is back.
- Used codes are read fresh on every call; a stale read only wastes
  generation effort, the UNIQUE constraint still protects inserts.
- populate_pool() keeps going with an empty exclusion set when the used
  code read fails.
- Replenishment is single-flight within one process. It is not a
  distributed lock.

Classes:
    ShortCodePoolManager:  Orchestrates the pool's lifecycle.
"""

import time
from typing import Protocol

from prometheus_client import Counter, Histogram
from sqlalchemy.exc import SQLAlchemyError

from codepool.config import Settings
from codepool.generator import ShortCodeGenerator
from codepool.logger import setup_logger
from codepool.redis import RedisPoolStore
from codepool.schemas import (
    DatabaseStatistics,
    GenerationProgress,
    MaintenanceResult,
    PoolConfiguration,
    PoolStatistics,
    PopulateResult,
    ReconcileResult,
    StoreStatistics,
)

__all__ = ["POOL_REPLENISHMENTS_TOTAL", "ShortCodePoolManager", "UsedCodeSource"]

POOL_REPLENISHMENTS_TOTAL = Counter(
    "short_code_pool_replenishments_total",
    "Replenishment runs started by the pool manager",
)
GENERATION_DURATION = Histogram(
    "short_code_generation_duration_seconds",
    "Time spent generating codes for one population run",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)


class UsedCodeSource(Protocol):
    """The slice of the durable store the manager depends on."""

    is_connected: bool

    async def health_check(self) -> bool: ...

    async def list_all_short_codes(self) -> list[str]: ...


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class ShortCodePoolManager:
    def __init__(
        self,
        settings: Settings,
        generator: ShortCodeGenerator,
        store: RedisPoolStore,
        repository: UsedCodeSource,
    ) -> None:
        self.generator = generator
        self.store = store
        self.repository = repository
        self.logger = setup_logger("short-code-pool-manager", settings.LOG_LEVEL)

        self.pool_size = settings.SHORT_CODE_POOL_SIZE
        self.min_pool_size = settings.SHORT_CODE_POOL_MIN_SIZE
        self.replenish_threshold = settings.SHORT_CODE_REPLENISH_THRESHOLD
        self.batch_size = settings.SHORT_CODE_GENERATION_BATCH_SIZE

        self.is_initialized = False
        self.is_replenishing = False

        self.logger.info(
            f"Pool manager configured: target={self.pool_size} min={self.min_pool_size} "
            f"replenish_threshold={self.replenish_threshold} batch_size={self.batch_size}"
        )

    async def initialize(self) -> None:
        if self.is_initialized:
            self.logger.debug("Pool manager already initialized")
            return

        self.logger.info("Initializing short code pool...")
        if not self.store.is_connected:
            try:
                await self.store.connect()
            except Exception as e:
                self.logger.error(f"Failed to connect to Redis for pool initialization: {e!r}")
                raise

        current_size = await self.get_current_pool_size()
        self.logger.info(f"Current pool status: size={current_size} target={self.pool_size}")

        if current_size < self.min_pool_size:
            self.logger.info("Pool size below minimum, starting reconciliation and population")
            await self.reconcile_and_populate_pool()
        else:
            self.logger.info("Pool size adequate, performing reconciliation only")
            await self.reconcile_pool()

        self.is_initialized = True
        self.logger.info("Short code pool initialization completed")

    async def get_current_pool_size(self) -> int:
        return await self.store.get_pool_size()

    async def get_used_short_codes(self) -> list[str]:
        if not self.repository.is_connected:
            try:
                await self.repository.health_check()
            except SQLAlchemyError as e:
                self.logger.warning(f"Database not connected, cannot retrieve used codes: {e!r}")
                return []
            self.logger.info("Database connection recovered")
        try:
            return await self.repository.list_all_short_codes()
        except Exception as e:
            self.logger.error(f"Failed to retrieve used short codes from database: {e!r}")
            raise

    async def reconcile_pool(self) -> ReconcileResult:
        """Remove every code that is already assigned in the database from the pool."""
        self.logger.info("Starting pool reconciliation...")
        start = time.perf_counter()

        used_codes = await self.get_used_short_codes()
        if not used_codes:
            self.logger.info("No used codes found, reconciliation complete")
            return ReconcileResult(removed_count=0, used_codes_checked=0, duration_ms=_elapsed_ms(start))

        removed_count = await self.store.remove_codes_from_pool(used_codes)
        result = ReconcileResult(
            removed_count=removed_count,
            used_codes_checked=len(used_codes),
            duration_ms=_elapsed_ms(start),
        )
        self.logger.info(
            f"Pool reconciliation completed: checked={result.used_codes_checked} "
            f"removed={result.removed_count} duration_ms={result.duration_ms:.1f}"
        )
        return result

    async def populate_pool(self, target_size: int | None = None) -> PopulateResult:
        target = target_size if target_size is not None else self.pool_size
        self.logger.info(f"Starting pool population: target={target}")
        start = time.perf_counter()

        current_size = await self.get_current_pool_size()
        needed = target - current_size
        if needed <= 0:
            self.logger.info(f"Pool already at target size: size={current_size} target={target}")
            return PopulateResult(duration_ms=_elapsed_ms(start))

        try:
            used_codes = await self.get_used_short_codes()
        except Exception as e:
            self.logger.warning(f"Could not get used codes, proceeding without exclusion: {e!r}")
            used_codes = []

        def on_progress(progress: GenerationProgress) -> None:
            if progress.chunk_index % 10 == 0:
                self.logger.debug(
                    f"Code generation progress: {progress.generated_so_far}/{progress.total} "
                    f"({progress.percentage}%)"
                )

        with GENERATION_DURATION.time():
            new_codes = await self.generator.generate_batch(needed, set(used_codes), on_progress)

        if len(new_codes) < needed:
            self.logger.warning(f"Generated fewer codes than needed: needed={needed} generated={len(new_codes)}")

        added_count = await self.store.add_codes_to_pool(new_codes)
        if added_count < len(new_codes):
            self.logger.warning(f"Redis accepted {added_count} of {len(new_codes)} generated codes")

        result = PopulateResult(
            requested_count=needed,
            generated_count=len(new_codes),
            added_count=added_count,
            duration_ms=_elapsed_ms(start),
        )
        self.logger.info(
            f"Pool population completed: generated={result.generated_count} added={result.added_count} "
            f"final_size~{current_size + added_count} duration_ms={result.duration_ms:.1f}"
        )
        return result

    async def reconcile_and_populate_pool(self) -> MaintenanceResult:
        self.logger.info("Starting reconciliation and population...")
        start = time.perf_counter()

        try:
            reconcile_result = await self.reconcile_pool()
        except Exception as e:
            self.logger.error(f"Reconciliation failed during reconcile and populate: {e!r}")
            raise

        try:
            populate_result = await self.populate_pool()
        except Exception as e:
            self.logger.error(f"Population failed during reconcile and populate: {e!r}")
            raise

        return MaintenanceResult(
            reconcile_result=reconcile_result,
            populate_result=populate_result,
            duration_ms=_elapsed_ms(start),
        )

    async def check_and_replenish_pool(self) -> PopulateResult | None:
        """Top the pool up to target when it is at or below the replenish threshold.

        Returns None when nothing ran (already replenishing, or above threshold).
        """
        if self.is_replenishing:
            self.logger.debug("Pool replenishment already in progress, skipping")
            return None

        # Claimed before the first await so concurrent callers see it.
        self.is_replenishing = True
        try:
            current_size = await self.get_current_pool_size()
            if current_size > self.replenish_threshold:
                return None

            self.logger.info(
                f"Pool size below replenishment threshold, replenishing: size={current_size} "
                f"threshold={self.replenish_threshold}"
            )
            POOL_REPLENISHMENTS_TOTAL.inc()
            return await self.populate_pool()
        except Exception as e:
            self.logger.error(f"Pool replenishment failed: {e!r}")
            raise
        finally:
            self.is_replenishing = False

    async def get_pool_statistics(self) -> PoolStatistics:
        try:
            store_stats = await self.store.get_pool_statistics()
        except Exception as e:
            store_stats = StoreStatistics(
                connected=False, state=self.store.state, pool_key=self.store.pool_key, error=str(e)
            )

        try:
            used_codes = await self.get_used_short_codes()
            database_stats = DatabaseStatistics(connected=self.repository.is_connected, used_codes_count=len(used_codes))
        except Exception as e:
            database_stats = DatabaseStatistics(connected=self.repository.is_connected, error=str(e))

        return PoolStatistics(
            store=store_stats,
            database=database_stats,
            pool=PoolConfiguration(
                target_size=self.pool_size,
                min_size=self.min_pool_size,
                replenish_threshold=self.replenish_threshold,
                batch_size=self.batch_size,
                is_replenishing=self.is_replenishing,
                is_initialized=self.is_initialized,
            ),
            code_space=self.generator.get_code_space_statistics(store_stats.pool_size),
        )

    async def clear_pool(self) -> bool:
        self.logger.info("Clearing short code pool...")
        cleared = await self.store.clear_pool()
        if not cleared:
            self.logger.warning("Redis not connected, pool was not cleared")
        return cleared

    async def shutdown(self) -> None:
        self.logger.info("Shutting down pool manager...")
        self.is_initialized = False
        self.is_replenishing = False
