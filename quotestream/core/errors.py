"""API error type and exception handlers.

Every client-visible error renders as ``{"ok": false, "error": "<code>"}``.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)

BAD_REQUEST = "bad_request"


class ApiError(Exception):
    """Raised by routers and dependencies with a machine-readable code."""

    def __init__(self, status_code: int, error: str):
        super().__init__(error)
        self.status_code = status_code
        self.error = error


def error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    logger.info("api_error", status_code=exc.status_code, error=exc.error)
    return error_response(exc.status_code, exc.error)


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.info("request_validation_failed", errors=len(exc.errors()))
    return error_response(400, BAD_REQUEST)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = "not_found" if exc.status_code == 404 else str(exc.detail).lower().replace(" ", "_")
    return error_response(exc.status_code, code)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_error_handler)  # type: ignore[arg-type]
