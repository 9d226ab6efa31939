"""quotestream - realtime market quote collector and SSE relay.

Polls market data providers on per-market schedules, normalizes their
payloads into a common quote shape and streams the merged state to
subscribers.
"""

__version__ = "0.1.0"
