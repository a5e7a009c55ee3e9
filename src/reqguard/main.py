"""
Main FastAPI application entry point.

Sets up the governance middleware, health/metrics routes and lifecycle
events. ``install_governance`` does the same for an existing application.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import health_router, metrics_router
from .config import Settings, get_settings
from .core.exceptions import GovernanceException
from .core.governance import GovernanceCore
from .core.middleware import GovernanceMiddleware


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    # Silence the verbose watchfiles logger
    logging.getLogger("watchfiles").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler(governance: GovernanceCore) -> Any:
    """Create a lifespan handler bound to the governance core."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger = structlog.get_logger(__name__)
        logger.info("Starting reqguard service", version=app.version)

        try:
            yield
        finally:
            logger.info("Shutting down reqguard service")
            # flush pending log appends
            await governance.shutdown()
            logger.info("reqguard service shutdown complete")

    return lifespan


async def governance_exception_handler(request: Request, exc: GovernanceException) -> JSONResponse:
    """Handle custom governance exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Governance exception occurred",
        error=str(exc),
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    headers = {}

    # Add Retry-After header for rate limit errors
    if exc.status_code == 429 and "retry_after" in exc.details:
        headers["Retry-After"] = str(exc.details["retry_after"])

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=headers,
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
            "message": "Something went wrong!",
        },
    )


def install_governance(
    app: FastAPI,
    settings: Optional[Settings] = None,
    governance: Optional[GovernanceCore] = None,
) -> GovernanceCore:
    """
    Install the governance layer on an existing FastAPI app.

    Adds the instrumentation middleware, the health and metrics routes and
    the exception handlers, and stores the core on ``app.state.governance``.
    """
    if governance is None:
        governance = GovernanceCore(settings or get_settings())

    app.state.governance = governance
    app.add_middleware(GovernanceMiddleware, governance=governance)
    app.add_exception_handler(GovernanceException, governance_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])

    return governance


def create_app(settings: Optional[Settings] = None, governance: Optional[GovernanceCore] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function ensures all configuration is applied
    whether running via the CLI or direct execution.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    governance = governance or GovernanceCore(settings)

    app = FastAPI(
        title="reqguard",
        description="Request governance: timing, security heuristics, rate limiting, caching and health metrics",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=create_lifespan_handler(governance),
    )

    install_governance(app, settings, governance)

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "reqguard",
            "version": app.version,
            "health": "/health-detailed",
            "docs": "/docs",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
