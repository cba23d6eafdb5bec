"""Configuration management for the short-code pool service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from codepool.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    target = settings.SHORT_CODE_POOL_SIZE

**Step 3 — Override in tests**::
    settings = Settings(SHORT_CODE_CHARSET="abc", SHORT_CODE_LENGTH=3)

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Components receive a Settings instance explicitly; nothing reads the
  cached instance behind their back.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CHARSET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


class Settings(BaseSettings):
    APP_NAME: str = "short-code-pool"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL (durable store)
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 5
    DATABASE_RETRY_ATTEMPTS: int = 3
    DATABASE_RETRY_BASE_DELAY_SECONDS: float = 1.0

    # Redis (fast store)
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_CONNECT_TIMEOUT_SECONDS: float = 3.0
    REDIS_COMMAND_TIMEOUT_SECONDS: float = 5.0
    REDIS_RETRY_ATTEMPTS: int = 3
    REDIS_RETRY_BASE_DELAY_SECONDS: float = 1.0

    # Key layout
    SHORT_CODE_POOL_KEY: str = "url_shortener:short_codes"
    URL_CACHE_PREFIX: str = "url_shortener:cache:"
    URL_CACHE_TTL_SECONDS: int = 3600
    POOL_PUSH_BATCH_SIZE: int = 1000

    # Code space
    SHORT_CODE_CHARSET: str = DEFAULT_CHARSET
    SHORT_CODE_LENGTH: int = 5

    # Pool sizing
    SHORT_CODE_POOL_SIZE: int = 1_000_000
    SHORT_CODE_POOL_MIN_SIZE: int = 10_000
    SHORT_CODE_REPLENISH_THRESHOLD: int = 5_000
    SHORT_CODE_GENERATION_BATCH_SIZE: int = 50_000

    # Retrieval
    POOL_RETRIEVAL_RETRY_ATTEMPTS: int = 3
    POOL_RETRIEVAL_RETRY_BASE_DELAY_SECONDS: float = 0.1
    # Remaining size at or below which a successful pop logs a warning.
    # Defaults to SHORT_CODE_REPLENISH_THRESHOLD.
    POOL_LOW_WATERMARK_WARNING: int | None = None

    # Monitoring
    POOL_MONITORING_INTERVAL_SECONDS: float = 60.0
    SHORT_CODE_CRITICAL_THRESHOLD: int = 1_000
    POOL_ERROR_HISTORY_SIZE: int = 10

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_code_space(self) -> "Settings":
        if not self.SHORT_CODE_CHARSET:
            raise ValueError("SHORT_CODE_CHARSET must not be empty")
        if len(set(self.SHORT_CODE_CHARSET)) != len(self.SHORT_CODE_CHARSET):
            raise ValueError("SHORT_CODE_CHARSET must not contain duplicate characters")
        if self.SHORT_CODE_LENGTH <= 0:
            raise ValueError("SHORT_CODE_LENGTH must be positive")
        if self.SHORT_CODE_GENERATION_BATCH_SIZE <= 0:
            raise ValueError("SHORT_CODE_GENERATION_BATCH_SIZE must be positive")
        if self.POOL_PUSH_BATCH_SIZE <= 0:
            raise ValueError("POOL_PUSH_BATCH_SIZE must be positive")
        return self

    @property
    def low_watermark_warning(self) -> int:
        if self.POOL_LOW_WATERMARK_WARNING is None:
            return self.SHORT_CODE_REPLENISH_THRESHOLD
        return self.POOL_LOW_WATERMARK_WARNING


@lru_cache()
def get_settings() -> Settings:
    return Settings()
