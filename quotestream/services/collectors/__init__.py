"""Market collectors: provider polling, normalization and publishing."""

from quotestream.services.collectors.base import CollectResult, Collector, CollectorHealth
from quotestream.services.collectors.registry import (
    CollectorManager,
    build_collectors,
    get_collector_manager,
    set_collector_manager,
)

__all__ = [
    "CollectResult",
    "Collector",
    "CollectorHealth",
    "CollectorManager",
    "build_collectors",
    "get_collector_manager",
    "set_collector_manager",
]
