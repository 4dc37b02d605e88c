from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from hubjobs.config.logging import get_logger, setup_logging
from hubjobs.config.settings import Settings, settings as default_settings
from hubjobs.infra.database import Database
from hubjobs.v1.background import BackgroundJobs
from hubjobs.v1.core.exceptions import (
    HubJobsException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    hubjobs_exception_handler,
    request_validation_handler,
)
from hubjobs.v1.healthz import router as health_router
from hubjobs.v1.maintenance.routes import router as maintenance_router
from hubjobs.v1.queue.routes import router as queue_router
from hubjobs.v1.scheduler.routes import router as scheduler_router
from hubjobs.v1.system import router as system_router

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or default_settings

    # Initialize structured logging
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        database = Database(settings)
        background_jobs = BackgroundJobs(settings, database)
        app.state.database = database
        app.state.background_jobs = background_jobs

        await background_jobs.start()

        # Freeze the handler catalog outside development to prevent runtime modifications
        if settings.environment != "development":
            background_jobs.task_registry.freeze()

        try:
            yield
        finally:
            await background_jobs.stop()
            await database.close()

    app = FastAPI(
        title=settings.app_name,
        description="Durable job queues and cron-scheduled maintenance tasks",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(HubJobsException, hubjobs_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(queue_router, prefix="/v1")
    app.include_router(scheduler_router, prefix="/v1")
    app.include_router(maintenance_router, prefix="/v1")
    app.include_router(system_router, prefix="/v1")

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hubjobs.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
    )
