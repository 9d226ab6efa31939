"""Event bus module for normalized market events."""

from quotestream.services.events.schemas import MarketEvent, Quote
from quotestream.services.events.bus import (
    EventBus,
    get_event_bus,
    set_event_bus,
    reset_event_bus,
)

__all__ = [
    "MarketEvent",
    "Quote",
    "EventBus",
    "get_event_bus",
    "set_event_bus",
    "reset_event_bus",
]
