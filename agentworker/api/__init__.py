"""Agent execution REST API: FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agentworker.api.deps import get_core, set_runtime
from agentworker.api.errors import register_error_handlers
from agentworker.api.middleware.request_id import RequestIDMiddleware
from agentworker.api.routers import agents, execution, runs
from agentworker.clients.core_service import CoreServiceClient
from agentworker.core.config import Settings
from agentworker.core.logging import setup_logging
from agentworker.worker.runtime import build_runtime

log = structlog.get_logger("agentworker.api")


def _lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Startup: open stores, wire services, start the worker. Shutdown: drain."""
        runtime = await build_runtime(settings)
        supervisor = runtime.build_supervisor() if settings.run_worker_in_api else None
        set_runtime(runtime, supervisor)
        if supervisor is not None:
            await supervisor.start()
        log.info("api.started", worker=supervisor is not None, store=settings.store_backend)
        try:
            yield
        finally:
            if supervisor is not None:
                await supervisor.stop(grace_seconds=settings.shutdown_grace_seconds)
            await runtime.close()
            set_runtime(None)

    return lifespan


def create_app(settings: Settings | None = None, *, lifespan: bool = True) -> FastAPI:
    """Build and return the FastAPI application.

    Pass ``lifespan=False`` when the caller installs a runtime itself
    through :func:`agentworker.api.deps.set_runtime`.
    """
    setup_logging()
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="agentworker",
        docs_url="/api/v1/docs",
        openapi_url="/api/v1/openapi.json",
        lifespan=_lifespan(settings) if lifespan else None,
    )

    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health", tags=["ops"])
    async def health(core: CoreServiceClient = Depends(get_core)) -> JSONResponse:
        core_ok = await core.health_check()
        return JSONResponse(
            {
                "status": "ok" if core_ok else "degraded",
                "services": {"coreService": "healthy" if core_ok else "unhealthy"},
            }
        )

    app.include_router(execution.router, prefix="/api/v1/execute", tags=["execution"])
    app.include_router(runs.router, prefix="/api/v1/runs", tags=["runs"])
    app.include_router(agents.router, prefix="/api/v1/agents", tags=["agents"])

    return app
