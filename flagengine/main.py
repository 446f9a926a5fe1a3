"""
FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flagengine.core.config import settings
from flagengine.core.features import (
    EvaluationFailedError,
    EvaluationTimeoutError,
    FeatureFlagError,
    FeatureRuntime,
    FlagAlreadyExistsError,
    InvalidConfigurationError,
    NotFoundError,
    Runtime,
    StoreUnavailableError,
    VersionConflictError,
    get_feature_runtime,
    set_feature_runtime,
)
from flagengine.core.logging import configure_logging
from flagengine.api.routes import router as api_router
from flagengine.api.middleware import LoggingMiddleware, RequestContextMiddleware

logger = structlog.get_logger()

# Most specific first
ERROR_STATUS: list[tuple[type[FeatureFlagError], int]] = [
    (NotFoundError, 404),
    (FlagAlreadyExistsError, 409),
    (VersionConflictError, 409),
    (InvalidConfigurationError, 422),
    (StoreUnavailableError, 503),
    (EvaluationTimeoutError, 504),
    (EvaluationFailedError, 500),
]


def status_for(exc: FeatureFlagError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    # Startup
    configure_logging(settings.log_level, settings.log_format)
    runtime = get_feature_runtime()

    if settings.features.backend == "database" and settings.database.create_tables:
        from flagengine.models.database import init_db
        await init_db()

    logger.info(
        "Flag engine started",
        backend=settings.features.backend,
        environment=settings.environment,
    )

    yield

    # Shutdown
    if runtime.audit_log.pending_count:
        try:
            await runtime.audit_log.flush_pending()
        except StoreUnavailableError:
            logger.error("Audit events lost on shutdown", pending=runtime.audit_log.pending_count)

    if settings.features.backend == "database":
        from flagengine.models.database import close_db
        await close_db()


def create_app(runtime: FeatureRuntime | None = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        runtime: Pre-built flag engine components (tests). Defaults to
            the components built from settings.
    """
    if runtime is not None:
        set_feature_runtime(runtime)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # Middleware (order matters - last added is outermost)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    app.include_router(api_router, prefix="/api")

    # Exception handlers
    @app.exception_handler(FeatureFlagError)
    async def feature_flag_exception_handler(request: Request, exc: FeatureFlagError):
        """Translate the flag error taxonomy to JSON responses."""
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("Flag engine error", error=exc.code, message=str(exc), path=request.url.path)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.exception("Unhandled error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": str(exc) if settings.debug else "An error occurred",
            },
        )

    # Health checks
    @app.get("/health")
    async def health_check():
        """Quick health check endpoint (for load balancers)."""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
        }

    @app.get("/health/detailed")
    async def health_check_detailed(runtime: Runtime):
        """Health check including the flag store and audit backlog."""
        store_ok = await runtime.registry.ping()
        body = {
            "status": "healthy" if store_ok else "unhealthy",
            "version": settings.app_version,
            "checks": {
                "flag_store": "healthy" if store_ok else "unhealthy",
                "audit_pending": runtime.audit_log.pending_count,
            },
        }
        return JSONResponse(content=body, status_code=200 if store_ok else 503)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "flagengine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        workers=settings.workers,
    )
