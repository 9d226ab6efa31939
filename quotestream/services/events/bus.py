"""Event bus for normalized market events.

In-process publish/subscribe with a last-value cache, overall and per
event type. Every publish is written through to the state backend as a
best-effort side effect so a restart can replay the latest snapshot.

Dispatch is synchronous and in publish order. There is no queue: a slow
handler delays delivery to every handler after it.
"""

from typing import Callable, Optional

import structlog
from prometheus_client import Counter

from quotestream.services.events.schemas import MarketEvent
from quotestream.services.state_store import (
    LAST_EVENT_RECORD,
    StateBackend,
    spawn_best_effort,
)

logger = structlog.get_logger(__name__)

EVENTS_PUBLISHED = Counter(
    "quotestream_events_published_total",
    "Market events published on the bus",
    ["type"],
)

EventHandler = Callable[[MarketEvent], None]
UpdateListener = Callable[[], None]


class EventBus:
    """
    Process-wide event channel, constructed once and injected.

    Also carries the ``request_update`` signal that asks every collector
    for an immediate refresh.
    """

    def __init__(self, backend: Optional[StateBackend] = None):
        self._backend = backend
        self._handlers: list[EventHandler] = []
        self._update_listeners: list[UpdateListener] = []
        self._last: Optional[MarketEvent] = None
        self._last_by_type: dict[str, MarketEvent] = {}

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, event: MarketEvent) -> int:
        """
        Publish an event to every subscriber.

        Caches are updated first, then the event is persisted without
        awaiting, then handlers run in subscription order.

        Returns:
            Number of handlers that accepted the event.
        """
        self._last = event
        self._last_by_type[event.type] = event
        EVENTS_PUBLISHED.labels(type=event.type).inc()

        if self._backend is not None:
            spawn_best_effort(
                self._backend.save(LAST_EVENT_RECORD, event.to_dict()),
                name="last_event_persist",
            )

        delivered = 0
        for handler in list(self._handlers):
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.warning("event_handler_failed", type=event.type, error=str(e))

        logger.debug(
            "event_published",
            type=event.type,
            count=event.count,
            subscriber_count=delivered,
        )
        return delivered

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler. Returns an idempotent unsubscribe callable."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def subscriber_count(self) -> int:
        return len(self._handlers)

    # ------------------------------------------------------------------
    # Last-value cache
    # ------------------------------------------------------------------

    def get_last(self) -> Optional[MarketEvent]:
        return self._last

    def get_last_by_type(self, event_type: str) -> Optional[MarketEvent]:
        return self._last_by_type.get(event_type)

    def cached_types(self) -> list[str]:
        return list(self._last_by_type)

    async def hydrate(self) -> bool:
        """
        Restore the overall cache from persistence.

        Must run before the first publish. A quote event also seeds its
        per-type cache so order lookups work immediately after boot.
        """
        if self._backend is None or self._last is not None:
            return False

        data = await self._backend.load(LAST_EVENT_RECORD)
        if not data:
            logger.info("last_event_not_found", backend=self._backend.kind)
            return False

        try:
            event = MarketEvent.model_validate(data)
        except ValueError as e:
            logger.warning("last_event_invalid", error=str(e))
            return False

        self._last = event
        if not event.is_warning:
            self._last_by_type.setdefault(event.type, event)
        logger.info("last_event_hydrated", type=event.type, ts=event.ts, count=event.count)
        return True

    # ------------------------------------------------------------------
    # Manual refresh signal
    # ------------------------------------------------------------------

    def on_request_update(self, listener: UpdateListener) -> Callable[[], None]:
        """Register a refresh listener. Returns a detach callable."""
        self._update_listeners.append(listener)

        def detach() -> None:
            try:
                self._update_listeners.remove(listener)
            except ValueError:
                pass

        return detach

    def request_update(self) -> int:
        """Signal every listening collector. Returns the listener count."""
        listeners = list(self._update_listeners)
        for listener in listeners:
            try:
                listener()
            except Exception as e:
                logger.warning("request_update_listener_failed", error=str(e))
        logger.info("request_update_emitted", listeners=len(listeners))
        return len(listeners)


# ===========================================
# Singleton instance
# ===========================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """
    Get the process event bus.

    Lifespan installs one wired to the state backend; without that an
    unpersisted bus is created on first use.
    """
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
        logger.info("event_bus_initialized", persisted=False)
    return _event_bus


def set_event_bus(bus: Optional[EventBus]) -> None:
    """Set the event bus instance (startup or tests)."""
    global _event_bus
    _event_bus = bus


def reset_event_bus() -> None:
    """Reset the event bus singleton (for testing)."""
    global _event_bus
    _event_bus = None
