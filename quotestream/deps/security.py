"""Security dependencies for FastAPI routes.

A single shared API key, accepted from a header or a query parameter.
No configured key disables the check entirely.
"""

import hmac
from typing import Optional

import structlog
from fastapi import Request

from quotestream.config import get_settings
from quotestream.core.errors import ApiError

logger = structlog.get_logger(__name__)


def _matches(provided: Optional[str], expected: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def require_api_key(request: Request) -> bool:
    """
    Require the shared API key for protected routes.

    Security guarantees:
    - Uses hmac.compare_digest() for constant-time comparison
    - Header is checked first, then the query parameter
    - Returns 401 ``unauthorized`` when neither matches

    Usage:
        @router.get("/latest", dependencies=[Depends(require_api_key)])
    """
    settings = get_settings()
    if not settings.api_key:
        return True

    header_key = request.headers.get(settings.api_key_header_name)
    query_key = request.query_params.get(settings.api_key_query_param)

    if _matches(header_key, settings.api_key) or _matches(query_key, settings.api_key):
        return True

    logger.warning(
        "api_key_rejected",
        path=request.url.path,
        has_header=header_key is not None,
        has_query=query_key is not None,
    )
    raise ApiError(401, "unauthorized")
