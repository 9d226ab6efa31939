"""Aggregated international exchanges collector.

Scans every exchange of the reference table through TradingView, in
batches of 5 with a pause between batches. Per-exchange failures are
tolerated: the last good rows of an exchange are kept until it answers
again. Only companies on the country whitelist are published, and USD
prices are converted to TRY.
"""

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from quotestream.core.resilience import ProviderError
from quotestream.services.collectors.base import CollectResult, Collector
from quotestream.services.collectors.normalize import TV_INTL_MAP, normalize_rows
from quotestream.services.events.schemas import INTL_EXCHANGES, Quote
from quotestream.services.providers.exchange_rate import ExchangeRateClient
from quotestream.services.providers.reference import ExchangeInfo, in_whitelist
from quotestream.services.providers.tradingview import TradingViewClient, exchange_query

logger = structlog.get_logger(__name__)

BATCH_SIZE = 5
BATCH_PAUSE_SECONDS = 1.0


class IntlExchangesCollector(Collector):
    name = "intl"
    event_type = INTL_EXCHANGES
    market = "INTL"
    debounce_seconds = 5.0

    def __init__(
        self,
        scanner: TradingViewClient,
        rates: ExchangeRateClient,
        exchanges: list[ExchangeInfo],
        companies: dict[str, list[str]],
        *args: Any,
        batch_size: int = BATCH_SIZE,
        batch_pause_seconds: float = BATCH_PAUSE_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self._scanner = scanner
        self._rates = rates
        self._exchanges = exchanges
        self._companies = {code.upper(): names for code, names in companies.items()}
        self._batch_size = batch_size
        self._batch_pause_seconds = batch_pause_seconds
        self._sleep = sleep
        self._rows_by_exchange: dict[str, list[Quote]] = {}

    async def fetch_exchange(self, exchange: ExchangeInfo, usd_try: float) -> list[Quote]:
        """Whitelisted, currency-converted quotes of one exchange."""
        companies = self._companies.get((exchange.country_code or "").upper())
        if not companies:
            return []

        rows = await self._scanner.scan(exchange_query(exchange.tv_exchange))
        rows = [r for r in rows if in_whitelist(str(r.get("s") or ""), companies)]

        quotes = []
        for quote in normalize_rows(rows, TV_INTL_MAP, limit=None):
            update: dict[str, Any] = {
                "exchange": exchange.id,
                "country": exchange.country,
                "category": exchange.id,
                "currency": exchange.currency,
            }
            if exchange.currency == "USD" and quote.price is not None:
                update["price"] = round(quote.price * usd_try, 2)
                update["currency"] = "TRY"
            quotes.append(quote.model_copy(update=update))
        return quotes

    async def collect(self) -> CollectResult:
        usd_try = await self._rates.usd_try()
        exchanges = self._exchanges

        for start in range(0, len(exchanges), self._batch_size):
            if start:
                await self._sleep(self._batch_pause_seconds)
            batch = exchanges[start : start + self._batch_size]
            results = await asyncio.gather(
                *(self.fetch_exchange(ex, usd_try) for ex in batch),
                return_exceptions=True,
            )
            for exchange, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.warning("intl_exchange_failed", exchange=exchange.id, error=str(result))
                    continue
                self._rows_by_exchange[exchange.id] = result
                logger.debug("intl_exchange_fetched", exchange=exchange.id, count=len(result))

        quotes: list[Quote] = []
        seen: set[str] = set()
        for rows in self._rows_by_exchange.values():
            for quote in rows:
                if quote.symbol not in seen:
                    seen.add(quote.symbol)
                    quotes.append(quote)

        if not quotes:
            raise ProviderError("no exchange returned quotes")

        return CollectResult(
            quotes=quotes,
            source="tradingview",
            extra={"exchanges": len(self._rows_by_exchange), "usdTry": usd_try},
        )
