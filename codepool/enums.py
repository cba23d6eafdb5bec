"""Shared enums for the short-code pool.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = [
    "CodeSource",
    "ConnectionState",
    "HealthStatus",
    "PoolHealthStatus",
    "PoolLevel",
    "PoolRecommendation",
]


class HealthStatus(StrEnum):
    """Dependency health values reported by the health endpoint."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


class PoolHealthStatus(StrEnum):
    """Overall pool status derived by the monitor."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"

    @property
    def needs_replenishment(self) -> bool:
        return self in (PoolHealthStatus.CRITICAL, PoolHealthStatus.WARNING)


class CodeSource(StrEnum):
    """Where a handed-out short code came from."""

    REDIS_POOL = "redis_pool"
    FALLBACK = "fallback"


class ConnectionState(StrEnum):
    """Fast store connection lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PoolLevel(StrEnum):
    """Coarse pool fill level used by readiness probes."""

    ADEQUATE = "adequate"
    LOW = "low"
    CRITICAL = "critical"


class PoolRecommendation(StrEnum):
    NONE = "none"
    SCHEDULE_REPLENISHMENT = "schedule_replenishment"
    IMMEDIATE_REPLENISHMENT = "immediate_replenishment"
