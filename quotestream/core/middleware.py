"""Middleware configuration for the FastAPI application."""

import time
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quotestream import __version__
from quotestream.config import Settings
from quotestream.routers import metrics

logger = structlog.get_logger(__name__)


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """
    Configure CORS.

    With an allow-list, browser requests from any other origin are
    rejected with 403 before reaching a route. Without one, every origin
    is allowed (``*``).
    """
    allowed = settings.cors_origins
    if allowed:
        logger.info("cors_origins_configured", origins=allowed)
    else:
        logger.warning("cors_origins_not_set", detail="allowing all origins")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed or ["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", settings.api_key_header_name],
    )

    if not allowed:
        return

    allowed_set = set(allowed)

    async def origin_guard(request: Request, call_next):
        origin = request.headers.get("origin")
        if origin and origin not in allowed_set:
            logger.warning("cors_origin_rejected", origin=origin, path=request.url.path)
            return JSONResponse(
                status_code=403,
                content={"ok": False, "error": "origin_not_allowed"},
            )
        return await call_next(request)

    app.middleware("http")(origin_guard)


# Probe and scrape traffic is logged at debug level
QUIET_PATHS = frozenset({"/health", "/metrics"})


def create_request_middleware():
    """Create the request id, timing and metrics middleware."""

    async def request_middleware(request: Request, call_next):
        """Add request ID, timing, and metrics to all requests."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind request context to logger
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception("request_failed", error=str(e))
            return JSONResponse(
                status_code=500,
                content={"ok": False, "error": "internal_error"},
                headers={
                    "X-Request-ID": request_id,
                    "X-API-Version": __version__,
                },
            )

        duration_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"
        response.headers["X-API-Version"] = __version__

        # Skip /metrics to avoid recursion
        if request.url.path != "/metrics":
            metrics.record_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration=duration_ms / 1000,
            )

        log = logger.debug if request.url.path in QUIET_PATHS else logger.info
        log(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        return response

    return request_middleware
