"""FastAPI application entry point for the short-code pool service.

Application Lifecycle Diagram
=============================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ build       │
    │ PoolServices│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ startup():  │
    │ connect,    │
    │ initialize, │
    │ monitor     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ shutdown(): │
    │ stop monitor│
    │ disconnect  │
    └─────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn codepool.main:app --host 0.0.0.0 --port 8000

Key Behaviours
===============
- Startup fails when Redis cannot be reached after retries.
- /metrics exposes Prometheus metrics, including the pool collectors.
"""

__all__ = ["app", "create_app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from codepool.config import get_settings
from codepool.dependencies import PoolServices
from codepool.routes import router


def create_app(services: PoolServices | None = None) -> FastAPI:
    settings = services.settings if services is not None else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        pool_services = services or PoolServices.build(settings)
        app.state.pool_services = pool_services
        await pool_services.startup()
        yield
        await pool_services.shutdown()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Pre-generated short-code pool for the URL shortener",
        lifespan=lifespan,
    )

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app)

    app.include_router(router)
    return app


app = create_app()
