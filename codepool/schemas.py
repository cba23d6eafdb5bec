"""Pydantic schemas for the snapshots and results the pool hands out.

Every value the pool exposes to callers (the URL-creation path, health
endpoints, operator tooling) is one of these models, so it can be dumped
to JSON with ``model_dump(mode="json")`` without further massaging.

Schema Hierarchy
=================
::
    ShortCodeResult          one retrieval: code + source tag
    GenerationProgress       per-chunk progress of batch generation
    CodeSpaceStatistics      capacity / utilization of the code space
    ReconcileResult          reconcile_pool() outcome
    PopulateResult           populate_pool() outcome
    MaintenanceResult        reconcile + populate in one cycle
    PoolStatistics           aggregated observability snapshot
    ├─ StoreStatistics
    ├─ DatabaseStatistics
    ├─ PoolConfiguration
    └─ CodeSpaceStatistics
    HealthCheckResult        monitor health-check verdict
    PoolLevelResult          side-effect free readiness probe
    MonitorMetrics           counters + rolling error log
    DetailedStatus           health + statistics + metrics

Key Behaviours
===============
- ``ShortCodeResult.source`` is the only signal for fallback; retrieval
  never raises.
- Timestamps are timezone-aware UTC datetimes.
"""

import datetime

from pydantic import BaseModel, Field

from codepool.enums import CodeSource, ConnectionState, HealthStatus, PoolHealthStatus, PoolLevel, PoolRecommendation

__all__ = [
    "CodeSpaceStatistics",
    "DatabaseStatistics",
    "DetailedStatus",
    "ErrorRecord",
    "GenerationProgress",
    "GeneratorConfiguration",
    "HealthCheckResult",
    "HealthResponse",
    "MaintenanceResult",
    "MonitorMetrics",
    "MonitoringInfo",
    "PoolConfiguration",
    "PoolLevelResult",
    "PoolStatistics",
    "PoolThresholds",
    "PopulateResult",
    "ReconcileResult",
    "ShortCodeResult",
    "StoreStatistics",
    "utcnow",
]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ShortCodeResult(BaseModel):
    code: str
    source: CodeSource
    response_time_ms: float = Field(..., ge=0)
    remaining_pool_size: int | None = Field(
        None,
        description="Pool size sampled right after a successful pop; None for fallback codes.",
    )

    @property
    def is_fallback(self) -> bool:
        return self.source is CodeSource.FALLBACK


class GenerationProgress(BaseModel):
    chunk_index: int
    total_chunks: int
    generated_so_far: int
    total: int
    percentage: int


class CodeSpaceStatistics(BaseModel):
    max_possible_codes: int
    current_pool_size: int
    utilization_percentage: float
    remaining_codes: int
    collision_probability: float = Field(..., ge=0, le=1)
    recommended_pool_size: int


class GeneratorConfiguration(BaseModel):
    charset: str
    charset_length: int
    code_length: int
    pool_size: int
    batch_size: int
    max_possible_codes: int
    characters_used: dict[str, bool]


class ReconcileResult(BaseModel):
    removed_count: int = 0
    used_codes_checked: int = 0
    duration_ms: float = 0.0


class PopulateResult(BaseModel):
    requested_count: int = 0
    generated_count: int = 0
    added_count: int = 0
    duration_ms: float = 0.0

    @property
    def shortfall(self) -> int:
        return max(self.requested_count - self.generated_count, 0)


class MaintenanceResult(BaseModel):
    reconcile_result: ReconcileResult
    populate_result: PopulateResult
    duration_ms: float


class StoreStatistics(BaseModel):
    connected: bool
    state: ConnectionState
    pool_key: str
    pool_size: int = 0
    error: str | None = None


class DatabaseStatistics(BaseModel):
    connected: bool
    used_codes_count: int = 0
    error: str | None = None


class PoolConfiguration(BaseModel):
    target_size: int
    min_size: int
    replenish_threshold: int
    batch_size: int
    is_replenishing: bool
    is_initialized: bool


class PoolStatistics(BaseModel):
    store: StoreStatistics
    database: DatabaseStatistics
    pool: PoolConfiguration
    code_space: CodeSpaceStatistics
    timestamp: datetime.datetime = Field(default_factory=utcnow)


class HealthCheckResult(BaseModel):
    status: PoolHealthStatus
    service: str = "short_code_pool"
    timestamp: datetime.datetime = Field(default_factory=utcnow)
    pool_size: int | None = None
    alerts: list[str] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)
    replenishment_triggered: bool = False
    statistics: PoolStatistics | None = None
    response_time_ms: float = 0.0
    error: str | None = None


class PoolThresholds(BaseModel):
    critical: int
    replenish: int


class PoolLevelResult(BaseModel):
    status: str
    thresholds: PoolThresholds
    pool_size: int | None = None
    level: PoolLevel | None = None
    recommendation: PoolRecommendation | None = None
    error: str | None = None


class ErrorRecord(BaseModel):
    error: str
    error_type: str
    timestamp: datetime.datetime = Field(default_factory=utcnow)


class MonitoringInfo(BaseModel):
    is_active: bool
    interval_seconds: float
    last_health_check: HealthCheckResult | None = None


class MonitorMetrics(BaseModel):
    pool_size: int
    retrieval_count: int
    fallback_count: int
    replenishment_count: int
    last_replenishment: datetime.datetime | None
    errors: list[ErrorRecord]
    fallback_rate: float
    monitoring: MonitoringInfo
    thresholds: PoolThresholds


class DetailedStatus(BaseModel):
    health: HealthCheckResult | None = None
    statistics: PoolStatistics | None = None
    statistics_error: str | None = None
    metrics: MonitorMetrics


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
    short_code_pool: str
    pool_size: int | None = None
    timestamp: datetime.datetime = Field(default_factory=utcnow)
