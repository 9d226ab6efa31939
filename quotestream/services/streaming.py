"""Server-Sent Events fan-out of the event bus.

Each connection gets its own queue fed by a bus handler. The cached
overall last event is replayed on connect, then every publish is
forwarded, interleaved with ``: ping <ms>`` comment frames so idle
proxies keep the connection open.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

import structlog
from prometheus_client import Counter, Gauge

from quotestream.services.events.bus import EventBus
from quotestream.services.events.schemas import MarketEvent, now_ms

logger = structlog.get_logger(__name__)

STREAM_SUBSCRIBERS = Gauge(
    "quotestream_stream_subscribers",
    "Open SSE connections",
)

STREAM_EVENTS_DROPPED = Counter(
    "quotestream_stream_events_dropped_total",
    "Events dropped from full subscriber queues",
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def ping_frame(ts: Optional[int] = None) -> str:
    return f": ping {ts if ts is not None else now_ms()}\n\n"


class StreamBroadcaster:
    """Serves the event bus to long-lived SSE subscribers."""

    def __init__(
        self,
        bus: EventBus,
        keepalive_seconds: float = 15.0,
        event_name: Optional[str] = None,
        queue_size: int = 256,
    ):
        self._bus = bus
        self._queue_size = queue_size
        self._keepalive_seconds = keepalive_seconds
        self._event_name = event_name
        self._active: set[str] = set()

    def subscriber_count(self) -> int:
        return len(self._active)

    def format_event(self, event: MarketEvent) -> str:
        return event.to_sse(self._event_name)

    async def stream(
        self,
        subscriber_id: Optional[str] = None,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[str]:
        """
        Yield SSE frames for one connection until it closes.

        Args:
            subscriber_id: Identifier used in logs (generated if omitted)
            is_disconnected: Optional check run on every keep-alive tick

        Yields:
            Encoded SSE frames (data events and ping comments).
        """
        subscriber_id = subscriber_id or f"sse-{uuid4()}"
        queue: asyncio.Queue[MarketEvent] = asyncio.Queue(maxsize=self._queue_size)

        def offer(event: MarketEvent) -> None:
            # Stalled client: drop the oldest queued event
            if queue.full():
                queue.get_nowait()
                STREAM_EVENTS_DROPPED.inc()
            queue.put_nowait(event)

        unsubscribe = self._bus.subscribe(offer)
        self._active.add(subscriber_id)
        STREAM_SUBSCRIBERS.inc()

        logger.info(
            "sse_subscriber_added",
            subscriber_id=subscriber_id,
            total_subscribers=len(self._active),
        )

        try:
            last = self._bus.get_last()
            if last is not None:
                yield self.format_event(last)

            loop = asyncio.get_running_loop()
            next_ping = loop.time() + self._keepalive_seconds
            while True:
                timeout = max(0.0, next_ping - loop.time())
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    event = None
                if event is not None:
                    yield self.format_event(event)

                # Fixed-period heartbeat, independent of traffic
                if loop.time() >= next_ping:
                    if is_disconnected is not None and await is_disconnected():
                        break
                    yield ping_frame()
                    next_ping += self._keepalive_seconds
                    if next_ping < loop.time():
                        next_ping = loop.time() + self._keepalive_seconds
        finally:
            unsubscribe()
            self._active.discard(subscriber_id)
            STREAM_SUBSCRIBERS.dec()
            logger.info(
                "sse_subscriber_removed",
                subscriber_id=subscriber_id,
                remaining_subscribers=len(self._active),
            )


# ===========================================
# Singleton instance
# ===========================================

_broadcaster: Optional[StreamBroadcaster] = None


def get_broadcaster() -> StreamBroadcaster:
    """Get the stream broadcaster (bound to the process event bus)."""
    global _broadcaster
    if _broadcaster is None:
        from quotestream.config import get_settings
        from quotestream.services.events.bus import get_event_bus

        settings = get_settings()
        _broadcaster = StreamBroadcaster(
            get_event_bus(),
            keepalive_seconds=settings.stream_keepalive_seconds,
            event_name=settings.stream_event_name,
        )
    return _broadcaster


def set_broadcaster(broadcaster: Optional[StreamBroadcaster]) -> None:
    global _broadcaster
    _broadcaster = broadcaster
