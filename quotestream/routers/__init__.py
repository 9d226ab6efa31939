"""API routers for quotestream."""

from quotestream.routers import admin, health, metrics, stream, trade

__all__ = ["admin", "health", "metrics", "stream", "trade"]
