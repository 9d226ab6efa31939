"""Event schemas for the market event bus and SSE stream."""

import json
import math
import time
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# Event types published by the collectors
BIST_TOP100 = "bist_top100"
CRYPTO_TOP100 = "crypto_top100"
COINGECKO_TOP100 = "coingecko_top100"
FOREX_TOP100 = "forex_top100"
COMMODITY_TOP100 = "commodity_top100"
INTL_EXCHANGES = "intl_exchanges"

QUOTE_EVENT_TYPES = (
    BIST_TOP100,
    CRYPTO_TOP100,
    COINGECKO_TOP100,
    FOREX_TOP100,
    COMMODITY_TOP100,
    INTL_EXCHANGES,
)


def now_ms() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)


def to_finite_float(value: Any) -> Optional[float]:
    """Coerce a provider value to a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def to_positive_price(value: Any) -> Optional[float]:
    """Coerce a provider value to a finite positive price, or None."""
    number = to_finite_float(value)
    if number is None or number <= 0:
        return None
    return number


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class Quote(_CamelModel):
    """Normalized snapshot of one tradable instrument."""

    symbol: str
    name: Optional[str] = None
    price: Optional[float] = None
    change: Optional[float] = None
    change_pct: Optional[float] = None
    volume: Optional[float] = None
    market_cap: Optional[float] = None
    currency: Optional[str] = None
    asset_type: Optional[str] = None
    category: Optional[str] = None
    instrument_id: Optional[str] = None
    exchange: Optional[str] = None
    country: Optional[str] = None
    overridden: Optional[bool] = None
    raw: Optional[dict[str, Any]] = None

    @field_validator("price", mode="before")
    @classmethod
    def _price_positive(cls, value: Any) -> Optional[float]:
        return to_positive_price(value)

    @field_validator("change", "change_pct", "volume", "market_cap", mode="before")
    @classmethod
    def _finite_numbers(cls, value: Any) -> Optional[float]:
        return to_finite_float(value)


class MarketEvent(_CamelModel):
    """
    Unit published on the event bus.

    Quote events carry ``data``; warning events (``<family>_warning``)
    carry ``message`` and ``backoff_ms`` instead. The bus is last-value
    wins per ``type``.
    """

    type: str = Field(..., description="Producing collector/category tag")
    ts: int = Field(default_factory=now_ms, description="Creation time (epoch ms)")
    last_update: Optional[str] = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="Human readable timestamp",
    )
    count: int = 0
    data: Optional[list[Quote]] = None
    source: Optional[str] = None
    message: Optional[str] = None
    backoff_ms: Optional[int] = None

    @property
    def is_warning(self) -> bool:
        return self.data is None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict using the wire (camelCase) field names."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def to_sse(self, event_name: Optional[str] = None) -> str:
        """
        Format as an SSE message.

        Returns:
            ``event: <name>\\n`` (only when a name is given) followed by
            ``data: <json>\\n\\n``.
        """
        prefix = f"event: {event_name}\n" if event_name else ""
        return f"{prefix}data: {self.to_json()}\n\n"


# Convenience constructors


def quotes_event(
    event_type: str,
    quotes: list[Quote],
    source: Optional[str] = None,
    **extra: Any,
) -> MarketEvent:
    """Create a successful quote event for a collector."""
    return MarketEvent(
        type=event_type,
        count=len(quotes),
        data=quotes,
        source=source,
        **extra,
    )


def warning_event(family: str, message: str, backoff_ms: int) -> MarketEvent:
    """Create a ``<family>_warning`` event after a failed collection."""
    return MarketEvent(
        type=f"{family}_warning",
        count=0,
        message=message,
        backoff_ms=backoff_ms,
    )
