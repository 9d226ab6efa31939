"""Crypto, forex and commodity collectors backed by the TradingView scanner."""

from typing import Optional

from quotestream.services.collectors.base import CollectResult, Collector
from quotestream.services.collectors.normalize import (
    MAX_QUOTES,
    FieldMap,
    TV_COMMODITY_MAP,
    TV_CRYPTO_MAP,
    TV_FOREX_MAP,
    normalize_rows,
    popular_first,
)
from quotestream.services.events.schemas import (
    COMMODITY_TOP100,
    CRYPTO_TOP100,
    FOREX_TOP100,
)
from quotestream.services.providers.tradingview import (
    COMMODITY_QUERY,
    CRYPTO_QUERY,
    FOREX_QUERY,
    ScanQuery,
    TradingViewClient,
)

POPULAR_FOREX = (
    "EURUSD",
    "USDJPY",
    "GBPUSD",
    "USDCHF",
    "AUDUSD",
    "USDCAD",
    "NZDUSD",
    "EURTRY",
    "USDTRY",
    "GBPTRY",
    "XAUUSD",
    "XAGUSD",
    "EURGBP",
    "EURJPY",
    "GBPJPY",
    "CHFJPY",
)

POPULAR_COMMODITIES = (
    "COMEX:GC1!",
    "COMEX:SI1!",
    "NYMEX:CL1!",
    "NYMEX:NG1!",
    "TVC:USOIL",
    "TVC:UKOIL",
    "MCX:GOLD1!",
    "MCX:SILVER1!",
    "CBOT:ZC1!",
    "CBOT:ZW1!",
    "CBOT:ZS1!",
    "COMEX:HG1!",
)


class ScannerCollector(Collector):
    """Runs one scanner query and maps its rows with a field table."""

    query: ScanQuery
    field_map: FieldMap
    popular: tuple[str, ...] = ()

    def __init__(self, client: TradingViewClient, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._client = client

    async def collect(self) -> CollectResult:
        rows = await self._client.scan(self.query)
        quotes = normalize_rows(rows, self.field_map, limit=None)
        if self.popular:
            quotes = popular_first(quotes, self.popular)
        return CollectResult(quotes=quotes[:MAX_QUOTES], source="tradingview")


class CryptoCollector(ScannerCollector):
    name = "crypto"
    event_type = CRYPTO_TOP100
    market = "CRYPTO"
    query = CRYPTO_QUERY
    field_map = TV_CRYPTO_MAP


class ForexCollector(ScannerCollector):
    name = "forex"
    event_type = FOREX_TOP100
    market = "FOREX"
    query = FOREX_QUERY
    field_map = TV_FOREX_MAP
    popular = POPULAR_FOREX


class CommodityCollector(ScannerCollector):
    name = "commodity"
    event_type = COMMODITY_TOP100
    market = "COMMODITY"
    query = COMMODITY_QUERY
    field_map = TV_COMMODITY_MAP
    popular = POPULAR_COMMODITIES
