"""Order simulator backed by the event bus cache.

Market orders only: an order is filled instantly at the last cached
price of its instrument. Orders live in memory for the process lifetime,
most recent first.
"""

import itertools
from dataclasses import dataclass
from typing import Any, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from quotestream.services.events.bus import EventBus
from quotestream.services.events.schemas import (
    BIST_TOP100,
    COINGECKO_TOP100,
    COMMODITY_TOP100,
    CRYPTO_TOP100,
    FOREX_TOP100,
    INTL_EXCHANGES,
    MarketEvent,
    Quote,
    now_ms,
    to_positive_price,
)

logger = structlog.get_logger(__name__)

# Error codes with their HTTP status
SYMBOL_NOT_FOUND = "symbol_not_found"
PRICE_UNAVAILABLE = "price_unavailable"
INVALID_AMOUNT = "invalid_amount"
INVALID_SIDE = "invalid_side"
NOT_FOUND = "not_found"

ERROR_STATUS = {
    SYMBOL_NOT_FOUND: 404,
    PRICE_UNAVAILABLE: 400,
    INVALID_AMOUNT: 400,
    INVALID_SIDE: 400,
    NOT_FOUND: 404,
}

SIDES = ("buy", "sell")

MARKET_ALIASES: dict[str, tuple[str, ...]] = {
    "bist": (BIST_TOP100,),
    "stock": (BIST_TOP100,),
    "crypto": (CRYPTO_TOP100, COINGECKO_TOP100),
    "forex": (FOREX_TOP100,),
    "fx": (FOREX_TOP100,),
    "commodity": (COMMODITY_TOP100,),
    "cmdty": (COMMODITY_TOP100,),
    "emtia": (COMMODITY_TOP100,),
    "intl": (INTL_EXCHANGES,),
}

# Searched after the overall last event when no market is given
LOOKUP_PRIORITY = (
    CRYPTO_TOP100,
    COINGECKO_TOP100,
    BIST_TOP100,
    FOREX_TOP100,
    COMMODITY_TOP100,
    INTL_EXCHANGES,
)

# Raw provider fields consulted when a cached quote carries no price
RAW_PRICE_FIELDS = ("current_price", "price", "last_price", "close")


class Order(BaseModel):
    """Synthetic fill record."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    symbol: str
    instrument_id: Optional[str] = None
    side: Literal["buy", "sell"]
    amount: float
    price: float
    total: float
    status: Literal["filled", "cancelled"] = "filled"
    created_at: int
    filled_at: Optional[int] = None
    cancelled_at: Optional[int] = None
    market: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class OrderResult:
    """Outcome of an order operation (an order or an error code)."""

    order: Optional[Order] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def status_code(self) -> int:
        return ERROR_STATUS.get(self.error, 400) if self.error else 200


def _quote_matches(quote: Quote, key: str) -> bool:
    if quote.symbol.lower() == key:
        return True
    return bool(quote.instrument_id) and quote.instrument_id.lower() == key  # type: ignore[union-attr]


def resolve_price(quote: Quote) -> Optional[float]:
    """Finite positive price of a cached quote, or None."""
    if quote.price is not None:
        return to_positive_price(quote.price)
    raw = quote.raw or {}
    for field_name in RAW_PRICE_FIELDS:
        if raw.get(field_name) is not None:
            return to_positive_price(raw[field_name])
    return None


class OrderSimulator:
    """Fills market orders against the last cached quotes."""

    def __init__(self, bus: EventBus, clock=now_ms):
        self._bus = bus
        self._clock = clock
        self._orders: list[Order] = []
        self._seq = itertools.count(1)

    def _next_id(self) -> str:
        return f"{self._clock()}-{next(self._seq)}"

    def _sources(self, market: Optional[str]) -> list[Optional[MarketEvent]]:
        if market:
            types = MARKET_ALIASES.get(market.lower(), (market,))
            return [self._bus.get_last_by_type(t) for t in types]
        return [self._bus.get_last()] + [
            self._bus.get_last_by_type(t) for t in LOOKUP_PRIORITY
        ]

    def find_instrument(self, symbol: str, market: Optional[str] = None) -> Optional[Quote]:
        """First cached quote whose symbol or instrument id matches, case-insensitively."""
        key = (symbol or "").strip().lower()
        if not key:
            return None
        for event in self._sources(market):
            if event is None or event.data is None:
                continue
            for quote in event.data:
                if _quote_matches(quote, key):
                    return quote
        return None

    def create_order(
        self,
        symbol: str,
        side: str,
        amount: Any,
        market: Optional[str] = None,
    ) -> OrderResult:
        """Resolve the instrument and record an instantly filled order."""
        log = logger.bind(symbol=symbol, side=side, market=market)

        if side not in SIDES:
            log.info("order_rejected", error=INVALID_SIDE)
            return OrderResult(error=INVALID_SIDE)

        quote = self.find_instrument(symbol, market)
        if quote is None:
            log.info("order_rejected", error=SYMBOL_NOT_FOUND)
            return OrderResult(error=SYMBOL_NOT_FOUND)

        price = resolve_price(quote)
        if price is None:
            log.info("order_rejected", error=PRICE_UNAVAILABLE)
            return OrderResult(error=PRICE_UNAVAILABLE)

        qty = to_positive_price(amount)
        if qty is None:
            log.info("order_rejected", error=INVALID_AMOUNT)
            return OrderResult(error=INVALID_AMOUNT)

        now = self._clock()
        order = Order(
            id=self._next_id(),
            symbol=quote.symbol,
            instrument_id=quote.instrument_id,
            side=side,  # type: ignore[arg-type]
            amount=qty,
            price=price,
            total=price * qty,
            status="filled",
            created_at=now,
            filled_at=now,
            market=market or quote.asset_type or "unknown",
        )
        self._orders.insert(0, order)
        log.info("order_filled", order_id=order.id, price=price, total=order.total)
        return OrderResult(order=order)

    def cancel_order(self, order_id: str) -> OrderResult:
        """Cancel an order. Filled orders are returned unchanged."""
        order = self.get_order(order_id)
        if order is None:
            return OrderResult(error=NOT_FOUND)
        if order.status == "filled":
            return OrderResult(order=order)
        order.status = "cancelled"
        order.cancelled_at = self._clock()
        logger.info("order_cancelled", order_id=order_id)
        return OrderResult(order=order)

    def list_orders(self) -> list[Order]:
        return list(self._orders)

    def get_order(self, order_id: str) -> Optional[Order]:
        for order in self._orders:
            if order.id == order_id:
                return order
        return None


# ===========================================
# Singleton instance
# ===========================================

_simulator: Optional[OrderSimulator] = None


def get_order_simulator() -> OrderSimulator:
    global _simulator
    if _simulator is None:
        from quotestream.services.events.bus import get_event_bus

        _simulator = OrderSimulator(get_event_bus())
    return _simulator


def set_order_simulator(simulator: Optional[OrderSimulator]) -> None:
    global _simulator
    _simulator = simulator
