"""FastAPI dependencies for auth."""

from quotestream.deps.security import require_api_key

__all__ = ["require_api_key"]
