"""quotestream - FastAPI Application."""

import logging

import structlog
from fastapi import FastAPI

from quotestream import __version__
from quotestream.config import get_settings
from quotestream.core.errors import register_exception_handlers
from quotestream.core.lifespan import lifespan
from quotestream.core.middleware import create_request_middleware, setup_cors
from quotestream.core.sentry import init_sentry
from quotestream.routers import admin, health, metrics, stream, trade

settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

# Initialize Sentry (if configured)
init_sentry(settings)

# Conditionally disable docs in production (set DOCS_ENABLED=false)
app = FastAPI(
    title="quotestream",
    description="Market data collector and SSE relay",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
)

register_exception_handlers(app)

# Request middleware first so CORS wraps it
app.middleware("http")(create_request_middleware())
setup_cors(app, settings)

app.include_router(health.router, tags=["Health"])
app.include_router(stream.router)
app.include_router(admin.router)
app.include_router(trade.router)
app.include_router(metrics.router)  # Metrics endpoint (excluded from OpenAPI)


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "quotestream",
        "version": __version__,
        "stream": "/stream",
        "health": "/health",
    }


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "quotestream.main:app",
        host=settings.service_host,
        port=settings.service_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
