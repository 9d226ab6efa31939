"""SSE stream and latest-snapshot endpoints."""

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from quotestream.deps.security import require_api_key
from quotestream.services.events.bus import EventBus, get_event_bus
from quotestream.services.events.schemas import now_ms
from quotestream.services.streaming import (
    SSE_HEADERS,
    StreamBroadcaster,
    get_broadcaster,
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["stream"])


@router.get("/stream", response_class=StreamingResponse)
async def stream(
    request: Request,
    broadcaster: StreamBroadcaster = Depends(get_broadcaster),
):
    """
    Server-Sent Events stream of market events.

    **Event format**:
    ```
    data: {"type":"crypto_top100","ts":...,"count":100,"data":[...]}

    ```
    An ``event: <name>`` line precedes ``data`` when ``STREAM_EVENT_NAME``
    is set. A ``: ping <ms>`` comment is sent every 15s of silence.
    """
    client = request.client.host if request.client else "unknown"
    logger.info("sse_connection_started", client=client)
    return StreamingResponse(
        broadcaster.stream(is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/latest", dependencies=[Depends(require_api_key)])
async def latest(bus: EventBus = Depends(get_event_bus)):
    """Overall last cached event (or null)."""
    last = bus.get_last()
    return {"ts": now_ms(), "last": last.to_dict() if last is not None else None}
