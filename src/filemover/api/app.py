"""
FastAPI application factory for the status surface.

``create_app()`` builds a runtime from settings (or takes one), mounts the
status router and adds ``/health``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from filemover import __version__
from filemover.api.status import create_status_router
from filemover.core.logging import get_logger
from filemover.runtime import Runtime, build_runtime

logger = get_logger(__name__)


def create_app(runtime: Runtime | None = None, prefix: str = "/api/v1") -> FastAPI:
    """Build the API app. A runtime built here is closed on shutdown."""
    owns_runtime = runtime is None
    runtime = runtime or build_runtime()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("api_starting", version=__version__)
        yield
        if owns_runtime:
            await runtime.aclose()
        logger.info("api_stopped")

    app = FastAPI(title="filemover", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_status_router(runtime.status, prefix=prefix))

    @app.get("/health")
    async def health() -> dict:
        coordinator_ok = await runtime.coordinator.ping()
        return {
            "status": "ok" if coordinator_ok else "degraded",
            "coordinator": coordinator_ok,
            "instance_id": runtime.settings.instance_id,
        }

    return app
