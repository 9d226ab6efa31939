"""Application lifespan management - startup and shutdown logic.

Startup order matters:

1. Select the state backend.
2. Load the config store (persisted state merged over defaults).
3. Build the event bus and hydrate its cache before anything publishes.
4. Wire the broadcaster and order simulator to that bus.
5. Start the collectors in the background; each performs its first
   fetch as part of starting.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI

from quotestream import __version__
from quotestream.config import get_settings
from quotestream.services.collectors.registry import (
    CollectorManager,
    build_collectors,
    set_collector_manager,
)
from quotestream.services.config_store import ConfigStore, set_config_store
from quotestream.services.events.bus import EventBus, set_event_bus
from quotestream.services.state_store import (
    build_state_backend,
    drain_background_writes,
)
from quotestream.services.streaming import StreamBroadcaster, set_broadcaster
from quotestream.services.trading import OrderSimulator, set_order_simulator

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    logger.info(
        "service_starting",
        version=__version__,
        port=settings.service_port,
        collectors=settings.enabled_collectors,
    )

    backend = build_state_backend(settings)

    config = ConfigStore(
        backend,
        settings.default_intervals,
        settings.default_paused,
        min_interval_ms=settings.min_interval_ms,
    )
    await config.load()
    set_config_store(config)

    bus = EventBus(backend)
    await bus.hydrate()
    set_event_bus(bus)

    set_broadcaster(
        StreamBroadcaster(
            bus,
            keepalive_seconds=settings.stream_keepalive_seconds,
            event_name=settings.stream_event_name,
        )
    )
    set_order_simulator(OrderSimulator(bus))

    manager: CollectorManager = build_collectors(settings, bus, config)
    set_collector_manager(manager)
    start_task: Optional[asyncio.Task] = asyncio.create_task(
        manager.start_all(), name="collectors_start"
    )

    yield

    logger.info("service_stopping")
    if start_task is not None and not start_task.done():
        start_task.cancel()
        try:
            await start_task
        except asyncio.CancelledError:
            pass
    await manager.stop_all()
    set_collector_manager(None)

    await drain_background_writes()
    await backend.close()
    logger.info("service_stopped")
