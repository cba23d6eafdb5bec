"""Redis adapter holding the short-code pool and the URL cache.

This module wraps a ``redis.asyncio`` client behind the operations the pool
needs: a list used as the pool (push / pop / length / remove-by-value) and
a separate key namespace used for cache-aside URL lookups.

Flow Diagram — get_short_code()
===============================
::
    ┌─────────────┐
    │ get_short_  │
    │ code()      │
    └──────┬──────┘
           ▼
    ┌─────────────┐   NO   ┌─────────────┐
    │ Connected?  ├───────►│ Fallback:   │
    └──────┬──────┘        │ generate_   │
       YES │               │ one()       │
           ▼               └──────▲──────┘
    ┌─────────────┐  empty /       │
    │ LPOP pool   ├────────────────┤
    │ (3 tries,   │  retries spent │
    │  backoff)   │                │
    └──────┬──────┘                │
       code│                       │
           ▼                       │
    ┌─────────────┐                │
    │ Sample LLEN │                │
    │ low-pool    │                │
    │ warning     │                │
    └──────┬──────┘                │
           ▼                       ▼
    ┌───────────────────────────────────┐
    │ ShortCodeResult(code, source, ...) │
    └───────────────────────────────────┘

Connection State Machine
========================
::
    disconnected ──connect()──► connecting ──ping ok──► connected
         ▲                          │                       │
         └──────retries spent───────┘                       │
         ▲                                                  │
         └────── disconnect() / transport error ────────────┘

How to Use
===========
**Step 1 — Build and connect**::
    store = RedisPoolStore(settings, generator)
    await store.connect()

**Step 2 — Hand out codes**::
    result = await store.get_short_code()
    if result.source is CodeSource.FALLBACK:
        ...  # normal outcome, not an error

**Step 3 — Cleanup on shutdown**::
    await store.disconnect()

Key Behaviours
===============
- get_short_code() never raises; an empty or unreachable pool yields a
  locally generated code tagged ``fallback``.
- Every mutation of the pool is a single native list command, so
  concurrent callers never receive the same popped code.
- Operations return safe defaults while disconnected. health_check() is
  the one strict operation.
- Cache operations are best-effort; failures read as cache misses.

Classes:
    RedisPoolStore:  Fast-store adapter for the pool and URL cache.
    PoolStoreError:  Base error for the adapter.
    PoolStoreNotConnectedError:  Raised by strict operations when disconnected.
"""

import asyncio
import time
from collections.abc import Callable, Iterable, Sequence

import redis.asyncio as redis
from prometheus_client import Counter, Gauge
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from codepool.config import Settings
from codepool.enums import CodeSource, ConnectionState
from codepool.generator import ShortCodeGenerator
from codepool.logger import setup_logger
from codepool.schemas import ShortCodeResult, StoreStatistics

__all__ = [
    "POOL_RETRIEVALS_TOTAL",
    "POOL_SIZE",
    "PoolStoreError",
    "PoolStoreNotConnectedError",
    "RedisPoolStore",
]

TRANSPORT_ERRORS = (RedisConnectionError, RedisTimeoutError, asyncio.TimeoutError, OSError)

POOL_RETRIEVALS_TOTAL = Counter(
    "short_code_pool_retrievals_total",
    "Short codes handed out, by source",
    ["source"],
)
POOL_SIZE = Gauge(
    "short_code_pool_size",
    "Last observed number of codes in the pool",
)


class PoolStoreError(Exception):
    """Base error for the pool store."""


class PoolStoreNotConnectedError(PoolStoreError):
    """The store is not connected and the operation cannot degrade."""


ClientFactory = Callable[[], redis.Redis]


class RedisPoolStore:
    """Fast-store adapter: the pool list plus the URL cache namespace."""

    def __init__(
        self,
        settings: Settings,
        generator: ShortCodeGenerator,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.settings = settings
        self.generator = generator
        self.pool_key = settings.SHORT_CODE_POOL_KEY
        self.cache_prefix = settings.URL_CACHE_PREFIX
        self.logger = setup_logger("short-code-pool-store", settings.LOG_LEVEL)
        self._client_factory = client_factory or self._default_client
        self._client: redis.Redis | None = None
        self._state = ConnectionState.DISCONNECTED

    def _default_client(self) -> redis.Redis:
        return redis.from_url(
            self.settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.settings.REDIS_CONNECT_TIMEOUT_SECONDS,
            socket_timeout=self.settings.REDIS_COMMAND_TIMEOUT_SECONDS,
        )

    # ========================================================================
    # CONNECTION LIFECYCLE
    # ========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._client is not None

    async def connect(self) -> None:
        """Connect with exponential backoff; re-raise the last error when all attempts fail."""
        if self.is_connected:
            return

        max_attempts = self.settings.REDIS_RETRY_ATTEMPTS
        last_error: BaseException | None = None
        for attempt in range(1, max_attempts + 1):
            self._state = ConnectionState.CONNECTING
            client = self._client_factory()
            try:
                await asyncio.wait_for(client.ping(), timeout=self.settings.REDIS_CONNECT_TIMEOUT_SECONDS)
            except TRANSPORT_ERRORS as e:
                last_error = e
                self._state = ConnectionState.DISCONNECTED
                await self._close_client(client)
                self.logger.warning(f"Redis connection attempt {attempt}/{max_attempts} failed: {e!r}")
                if attempt < max_attempts:
                    await asyncio.sleep(self.settings.REDIS_RETRY_BASE_DELAY_SECONDS * 2**attempt)
                continue

            self._client = client
            self._state = ConnectionState.CONNECTED
            self.logger.info(f"Connected to Redis on attempt {attempt}")
            return

        self.logger.error(f"Failed to connect to Redis after {max_attempts} attempts: {last_error!r}")
        assert last_error is not None
        raise last_error

    async def disconnect(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()
            self.logger.info("Disconnected from Redis")
        self._state = ConnectionState.DISCONNECTED

    async def _close_client(self, client: redis.Redis) -> None:
        try:
            await client.aclose()
        except TRANSPORT_ERRORS as e:
            self.logger.debug(f"Ignoring error while closing failed Redis client: {e!r}")

    def _mark_disconnected(self, error: BaseException) -> None:
        if self._state is not ConnectionState.DISCONNECTED:
            self.logger.warning(f"Redis transport error, marking store disconnected: {error!r}")
        self._state = ConnectionState.DISCONNECTED

    async def _probe_recovery(self) -> bool:
        # The client reconnects lazily; one successful PING brings the store back.
        if self._client is None or self._state is ConnectionState.CONNECTED:
            return self.is_connected
        try:
            await self._client.ping()
        except TRANSPORT_ERRORS:
            return False
        self._state = ConnectionState.CONNECTED
        self.logger.info("Redis connection recovered")
        return True

    async def health_check(self) -> bool:
        if not self.is_connected:
            raise PoolStoreNotConnectedError("Redis client not connected")
        try:
            return bool(await self._client.ping())
        except TRANSPORT_ERRORS as e:
            self._mark_disconnected(e)
            self.logger.error(f"Redis health check failed: {e!r}")
            raise

    # ========================================================================
    # POOL OPERATIONS
    # ========================================================================

    async def get_short_code(self) -> ShortCodeResult:
        start = time.perf_counter()
        if not self.is_connected:
            self.logger.debug("Redis not connected, generating fallback short code")
            return self._fallback(start)

        max_attempts = self.settings.POOL_RETRIEVAL_RETRY_ATTEMPTS
        last_error: RedisError | OSError | None = None
        for attempt in range(max_attempts):
            try:
                code = await self._client.lpop(self.pool_key)
            except (RedisError, *TRANSPORT_ERRORS) as e:
                last_error = e
                self.logger.warning(f"Pool pop attempt {attempt + 1}/{max_attempts} failed: {e!r}")
                if attempt < max_attempts - 1:
                    await asyncio.sleep(self.settings.POOL_RETRIEVAL_RETRY_BASE_DELAY_SECONDS * 2**attempt)
                continue

            if code is None:
                self.logger.info("Short code pool is empty, using fallback generation")
                return self._fallback(start)

            if not self.generator.is_valid_code(code):
                self.logger.warning(f"Discarded pool entry that does not fit the code space: {code!r}")
                return self._fallback(start)

            remaining = await self._sample_pool_size()
            if remaining is not None and remaining <= self.settings.low_watermark_warning:
                self.logger.warning(f"Short code pool running low: remaining={remaining}")

            POOL_RETRIEVALS_TOTAL.labels(source=CodeSource.REDIS_POOL.value).inc()
            return ShortCodeResult(
                code=code,
                source=CodeSource.REDIS_POOL,
                response_time_ms=(time.perf_counter() - start) * 1000,
                remaining_pool_size=remaining,
            )

        if isinstance(last_error, TRANSPORT_ERRORS):
            self._mark_disconnected(last_error)
        self.logger.error(f"Pool pop failed after {max_attempts} attempts, using fallback: {last_error!r}")
        return self._fallback(start)

    def _fallback(self, start: float) -> ShortCodeResult:
        POOL_RETRIEVALS_TOTAL.labels(source=CodeSource.FALLBACK.value).inc()
        return ShortCodeResult(
            code=self.generator.generate_one(),
            source=CodeSource.FALLBACK,
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def _sample_pool_size(self) -> int | None:
        try:
            size = await self._client.llen(self.pool_key)
        except (RedisError, *TRANSPORT_ERRORS) as e:
            self.logger.debug(f"Could not sample pool size after pop: {e!r}")
            return None
        POOL_SIZE.set(size)
        return size

    async def get_pool_size(self) -> int:
        if not self.is_connected:
            return 0
        try:
            size = await self._client.llen(self.pool_key)
        except (RedisError, *TRANSPORT_ERRORS) as e:
            if isinstance(e, TRANSPORT_ERRORS):
                self._mark_disconnected(e)
            else:
                self.logger.error(f"Failed to read pool size: {e!r}")
            return 0
        POOL_SIZE.set(size)
        return size

    async def add_codes_to_pool(self, codes: Sequence[str]) -> int:
        """Push ``codes`` in batches; returns how many were pushed (0 when disconnected)."""
        if not self.is_connected:
            self.logger.warning(f"Redis not connected, cannot add {len(codes)} codes to pool")
            return 0
        if not codes:
            return 0

        batch_size = self.settings.POOL_PUSH_BATCH_SIZE
        added = 0
        try:
            for offset in range(0, len(codes), batch_size):
                batch = codes[offset : offset + batch_size]
                await self._client.rpush(self.pool_key, *batch)
                added += len(batch)
        except TRANSPORT_ERRORS as e:
            self._mark_disconnected(e)
            self.logger.error(f"Failed to push codes to pool after {added} of {len(codes)}: {e!r}")
            raise
        self.logger.debug(f"Added {added} codes to pool")
        return added

    async def populate_pool(self, codes: Sequence[str]) -> bool:
        if not self.is_connected:
            return False
        await self.add_codes_to_pool(codes)
        return True

    async def remove_codes_from_pool(self, codes: Iterable[str]) -> int:
        """Remove every occurrence of each code; returns the number of list entries removed."""
        if not self.is_connected:
            self.logger.warning("Redis not connected, cannot remove codes from pool")
            return 0

        batch_size = self.settings.POOL_PUSH_BATCH_SIZE
        pending = list(codes)
        removed = 0
        try:
            for offset in range(0, len(pending), batch_size):
                pipe = self._client.pipeline(transaction=False)
                for code in pending[offset : offset + batch_size]:
                    pipe.lrem(self.pool_key, 0, code)
                results = await pipe.execute()
                removed += sum(int(count) for count in results)
        except TRANSPORT_ERRORS as e:
            self._mark_disconnected(e)
            raise
        return removed

    async def clear_pool(self) -> bool:
        if not self.is_connected:
            return False
        try:
            await self._client.delete(self.pool_key)
        except TRANSPORT_ERRORS as e:
            self._mark_disconnected(e)
            raise
        POOL_SIZE.set(0)
        return True

    async def get_pool_statistics(self) -> StoreStatistics:
        await self._probe_recovery()
        pool_size = await self.get_pool_size()
        return StoreStatistics(
            connected=self.is_connected,
            state=self._state,
            pool_key=self.pool_key,
            pool_size=pool_size,
        )

    # ========================================================================
    # URL CACHE (cache-aside, best-effort)
    # ========================================================================

    def _cache_key(self, short_code: str) -> str:
        return f"{self.cache_prefix}{short_code}"

    async def cache_url(self, short_code: str, url: str, ttl_seconds: int | None = None) -> bool:
        if not self.is_connected:
            self.logger.debug("Redis not connected, skipping cache operation")
            return False
        ttl = ttl_seconds if ttl_seconds is not None else self.settings.URL_CACHE_TTL_SECONDS
        try:
            await self._client.set(self._cache_key(short_code), url, ex=ttl)
        except (RedisError, *TRANSPORT_ERRORS) as e:
            self.logger.warning(f"Failed to cache URL for {short_code}, continuing without cache: {e!r}")
            return False
        return True

    async def get_cached_url(self, short_code: str) -> str | None:
        if not self.is_connected:
            self.logger.debug("Redis not connected, skipping cache lookup")
            return None
        try:
            return await self._client.get(self._cache_key(short_code))
        except (RedisError, *TRANSPORT_ERRORS) as e:
            self.logger.warning(f"Failed to read cached URL for {short_code}, treating as miss: {e!r}")
            return None

    async def remove_cached_url(self, short_code: str) -> bool:
        if not self.is_connected:
            return False
        try:
            await self._client.delete(self._cache_key(short_code))
        except (RedisError, *TRANSPORT_ERRORS) as e:
            self.logger.warning(f"Failed to remove cached URL for {short_code}: {e!r}")
            return False
        return True
