"""Market data provider clients."""

from quotestream.services.providers.coingecko import CoinGeckoClient
from quotestream.services.providers.exchange_rate import ExchangeRateClient
from quotestream.services.providers.getmidas import GetMidasClient
from quotestream.services.providers.tradingview import ScanQuery, TradingViewClient

__all__ = [
    "CoinGeckoClient",
    "ExchangeRateClient",
    "GetMidasClient",
    "ScanQuery",
    "TradingViewClient",
]
