"""BIST 100 collector: GetMidas page scrape with TradingView fallback."""

import structlog

from quotestream.services.collectors.base import CollectResult, Collector
from quotestream.services.collectors.normalize import (
    GETMIDAS_MAP,
    TV_BIST_MAP,
    normalize_rows,
)
from quotestream.services.events.schemas import BIST_TOP100
from quotestream.services.providers.getmidas import GetMidasClient
from quotestream.services.providers.tradingview import BIST_QUERY, TradingViewClient

logger = structlog.get_logger(__name__)


class BistCollector(Collector):
    name = "bist"
    event_type = BIST_TOP100
    market = "STOCK"

    def __init__(
        self,
        scraper: GetMidasClient,
        scanner: TradingViewClient,
        *args,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self._scraper = scraper
        self._scanner = scanner

    async def collect(self) -> CollectResult:
        try:
            rows = await self._scraper.fetch_rows()
            quotes = normalize_rows(rows, GETMIDAS_MAP)
        except Exception as e:
            logger.warning("bist_scrape_failed", error=str(e))
            quotes = []

        if quotes:
            return CollectResult(quotes=quotes, source="getmidas")

        logger.info("bist_fallback_tradingview")
        rows = await self._scanner.scan(BIST_QUERY)
        return CollectResult(quotes=normalize_rows(rows, TV_BIST_MAP), source="tradingview")
