"""FastAPI application factory for the SPS user API"""

import time
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sps.cache import CacheBackend
from sps.services.retention import start_retention_scheduler, stop_retention_scheduler
from sps.utils.config import Settings, config_manager, validate_settings
from sps.utils.logger import get_logger, setup_logger

from .deps import build_container
from .errors import register_exception_handlers
from .pipeline import install_pipeline
from .routes import audit, auth, metrics, users, version

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[CacheBackend] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """
    Build the app. ``settings`` defaults to config/settings.yaml (or built-in
    defaults); ``backend`` defaults to Redis when enabled, else in-memory.
    """
    settings = validate_settings(settings or config_manager.settings)
    setup_logger(
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        file_path=settings.logging.file_path,
        max_bytes=settings.logging.max_bytes,
        backup_count=settings.logging.backup_count,
    )

    app = FastAPI(
        title=settings.app.name,
        description="User management API with JWT authentication, audit logging and metrics",
        version=settings.app.version,
    )
    container = build_container(settings, backend=backend, clock=clock)
    app.state.container = container

    register_exception_handlers(app, is_production=settings.app.is_production)
    install_pipeline(app, container)

    # CORS outermost so preflight requests never reach the pipeline
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-API-Version",
            "X-API-Default-Version",
            "X-Cache",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
    )

    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(audit.router)
    app.include_router(metrics.router)
    app.include_router(version.router)

    @app.on_event("startup")
    async def startup_event():
        logger.info(
            "SPS API started",
            environment=settings.app.environment,
            backend=container.backend.name,
            rate_limit=settings.rate_limit.max,
            cache=settings.cache.enabled,
        )
        if settings.retention.enabled:
            try:
                start_retention_scheduler(
                    container.audit,
                    container.tokens,
                    container.metrics,
                    run_at=settings.retention.run_at,
                )
            except Exception as e:
                logger.error("Failed to start retention scheduler", error=str(e))

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutdown event triggered")
        if settings.retention.enabled:
            stop_retention_scheduler()

    return app
