"""
FastAPI application entry point.

Sets up the app with exception handlers, routes and lifecycle events.
Run with ``uvicorn analytics_dispatch.main:create_app --factory``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .api import events_router, healthz_router, metrics_router
from .config import Settings, get_settings
from .core.dispatcher import Dispatcher
from .core.exceptions import AnalyticsDispatchException
from .core.metrics import MetricsCollector


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler(dispatcher: Dispatcher) -> Any:
    """Create a lifespan handler that owns the dispatcher's resources."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Start the background scheduler; close backend sessions on shutdown."""
        logger = structlog.get_logger(__name__)
        logger.info("Starting analytics dispatch service", version=app.version)

        start = getattr(dispatcher.scheduler, "start", None)
        if start is not None:
            await start()

        try:
            logger.info("Analytics dispatch service started successfully")
            yield
        finally:
            logger.info("Shutting down analytics dispatch service")

            stop = getattr(dispatcher.scheduler, "stop", None)
            if stop is not None:
                await stop()
            await dispatcher.close()

            logger.info("Analytics dispatch service shutdown complete")

    return lifespan


def create_app(
    settings: Optional[Settings] = None,
    dispatcher: Optional[Dispatcher] = None,
    metrics: Optional[MetricsCollector] = None,
    configure_logs: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Collaborators default to ones built from settings; tests pass their own.
    """
    settings_provider = get_settings if settings is None else (lambda: settings)
    settings = settings_provider()

    if configure_logs:
        configure_logging(settings.log_level)

    metrics = metrics or MetricsCollector()
    dispatcher = dispatcher or Dispatcher(settings_provider=settings_provider, metrics=metrics)

    app = FastAPI(
        title="Analytics Dispatch",
        description="Analytics event delivery with hidden data redaction",
        version=__version__,
        lifespan=create_lifespan_handler(dispatcher),
    )
    app.state.metrics = metrics
    app.state.dispatcher = dispatcher

    app.add_exception_handler(AnalyticsDispatchException, analytics_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(events_router, prefix="/v1", tags=["events"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "Analytics Dispatch",
            "version": app.version,
            "docs": "/docs",
        }

    return app


async def analytics_exception_handler(request: Request, exc: AnalyticsDispatchException) -> JSONResponse:
    """Handle analytics dispatch exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Analytics dispatch exception occurred",
        error=str(exc),
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": str(exc),
            "details": exc.details,
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Unexpected exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "analytics_dispatch.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )
