"""Provider row normalization.

Each provider gets a declared FieldMap: for every canonical Quote field,
an ordered list of provider field names. The first name that yields a
usable value wins. Rows without a symbol or a finite positive price are
dropped.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

import structlog

from quotestream.services.config_store import Override
from quotestream.services.events.schemas import (
    Quote,
    to_finite_float,
    to_positive_price,
)
from quotestream.services.providers.reference import ticker_of

logger = structlog.get_logger(__name__)

MAX_QUOTES = 100


def _to_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class FieldMap:
    """Ordered provider field names per canonical Quote field."""

    symbol: tuple[str, ...]
    price: tuple[str, ...]
    name: tuple[str, ...] = ()
    change: tuple[str, ...] = ()
    change_pct: tuple[str, ...] = ()
    volume: tuple[str, ...] = ()
    market_cap: tuple[str, ...] = ()
    instrument_id: tuple[str, ...] = ()
    # Constant fields stamped on every quote (asset_type, category, currency)
    constants: dict[str, str] = field(default_factory=dict)


def pick(row: dict[str, Any], names: Iterable[str], coerce: Callable[[Any], Any]) -> Any:
    """First value under ``names`` that ``coerce`` accepts, else None."""
    for name in names:
        value = coerce(row.get(name))
        if value is not None:
            return value
    return None


TRADINGVIEW_FIELDS = dict(
    symbol=("s",),
    name=("description", "name"),
    price=("close",),
    change=("change_abs",),
    change_pct=("change",),
    volume=("volume",),
    market_cap=("market_cap_basic",),
)

TV_CRYPTO_MAP = FieldMap(
    **TRADINGVIEW_FIELDS, constants={"asset_type": "CRYPTO", "category": "CRYPTO"}
)
TV_FOREX_MAP = FieldMap(
    **TRADINGVIEW_FIELDS, constants={"asset_type": "FOREX", "category": "FOREX"}
)
TV_COMMODITY_MAP = FieldMap(
    **TRADINGVIEW_FIELDS, constants={"asset_type": "COMMODITY", "category": "COMMODITY"}
)
TV_BIST_MAP = FieldMap(
    **TRADINGVIEW_FIELDS,
    constants={"asset_type": "STOCK", "category": "BIST", "currency": "TRY"},
)
TV_INTL_MAP = FieldMap(**TRADINGVIEW_FIELDS, constants={"asset_type": "STOCK"})

GETMIDAS_MAP = FieldMap(
    symbol=("symbol", "ticker", "code", "isin", "name"),
    name=("name", "companyName", "description"),
    price=("lastPrice", "price", "close", "currentPrice", "last", "value"),
    change=("change", "changeAmount"),
    change_pct=("changePercentage", "changePercent", "change_pct", "percentage"),
    volume=("volume", "volumeTraded"),
    constants={"asset_type": "STOCK", "category": "BIST", "currency": "TRY"},
)

COINGECKO_MAP = FieldMap(
    symbol=("symbol",),
    name=("name",),
    price=("current_price",),
    change=("price_change_24h",),
    change_pct=("price_change_percentage_24h",),
    volume=("total_volume",),
    market_cap=("market_cap",),
    instrument_id=("id",),
    constants={"asset_type": "CRYPTO", "category": "CRYPTO", "currency": "USD"},
)


def normalize_row(row: dict[str, Any], mapping: FieldMap) -> Optional[Quote]:
    """Map one provider row, or None when it lacks a symbol or price."""
    if not isinstance(row, dict):
        return None
    symbol = pick(row, mapping.symbol, _to_text)
    price = pick(row, mapping.price, to_positive_price)
    if symbol is None or price is None:
        return None
    return Quote(
        symbol=symbol,
        name=pick(row, mapping.name, _to_text) or symbol,
        price=price,
        change=pick(row, mapping.change, to_finite_float),
        change_pct=pick(row, mapping.change_pct, to_finite_float),
        volume=pick(row, mapping.volume, to_finite_float),
        market_cap=pick(row, mapping.market_cap, to_finite_float),
        instrument_id=pick(row, mapping.instrument_id, _to_text),
        raw=row,
        **mapping.constants,
    )


def normalize_rows(
    rows: Iterable[dict[str, Any]],
    mapping: FieldMap,
    limit: Optional[int] = MAX_QUOTES,
) -> list[Quote]:
    """Normalize rows in order, dropping unusable and duplicate symbols."""
    quotes: list[Quote] = []
    seen: set[str] = set()
    dropped = 0
    for row in rows:
        quote = normalize_row(row, mapping)
        if quote is None or quote.symbol in seen:
            dropped += 1
            continue
        seen.add(quote.symbol)
        quotes.append(quote)
        if limit is not None and len(quotes) >= limit:
            break
    if dropped:
        logger.debug("rows_dropped", dropped=dropped, kept=len(quotes))
    return quotes


def popular_first(quotes: list[Quote], popular: Iterable[str]) -> list[Quote]:
    """Reorder so the listed symbols come first (in list order), rest unchanged."""
    by_key: dict[str, Quote] = {}
    for quote in quotes:
        by_key.setdefault(quote.symbol.upper(), quote)
        by_key.setdefault(ticker_of(quote.symbol).upper(), quote)

    head: list[Quote] = []
    for key in popular:
        quote = by_key.get(key.upper())
        if quote is not None and quote not in head:
            head.append(quote)
    head_ids = {id(q) for q in head}
    return head + [q for q in quotes if id(q) not in head_ids]


def apply_overrides(quotes: list[Quote], overrides: dict[str, Override]) -> list[Quote]:
    """
    Apply admin price overrides.

    An override keyed by the full symbol or by its bare ticker matches,
    case-insensitively. Overridden quotes get ``overridden=True``; their
    ``raw`` row is left as the provider sent it.
    """
    if not overrides:
        return quotes

    lookup = {symbol.upper(): override for symbol, override in overrides.items()}
    result = []
    for quote in quotes:
        override = lookup.get(quote.symbol.upper()) or lookup.get(
            ticker_of(quote.symbol).upper()
        )
        if override is None:
            result.append(quote)
            continue
        price = to_positive_price(override.apply(quote.price))
        if price is None:
            logger.warning(
                "override_result_invalid",
                symbol=quote.symbol,
                type=override.type,
                value=override.value,
            )
            result.append(quote)
            continue
        result.append(quote.model_copy(update={"price": price, "overridden": True}))
    return result
