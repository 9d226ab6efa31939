"""Health check endpoint."""

from typing import Any

from fastapi import APIRouter

from quotestream import __version__
from quotestream.services.collectors.registry import get_collector_manager
from quotestream.services.events.bus import get_event_bus
from quotestream.services.events.schemas import now_ms
from quotestream.services.streaming import get_broadcaster

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, Any]:
    """
    Liveness probe. Always ``ok: true`` while the process serves requests.

    Collector state (running, paused, backoff) is reported alongside for
    operators; it never turns the probe red.
    """
    manager = get_collector_manager()
    last = get_event_bus().get_last()
    return {
        "ok": True,
        "ts": now_ms(),
        "version": __version__,
        "lastEventTs": last.ts if last is not None else None,
        "subscribers": get_broadcaster().subscriber_count(),
        "collectors": manager.health() if manager is not None else [],
    }
