"""CoinGecko top-100 collector."""

from quotestream.services.collectors.base import CollectResult, Collector
from quotestream.services.collectors.normalize import COINGECKO_MAP, normalize_rows
from quotestream.services.events.schemas import COINGECKO_TOP100
from quotestream.services.providers.coingecko import CoinGeckoClient


class CoinGeckoCollector(Collector):
    name = "coingecko"
    event_type = COINGECKO_TOP100
    market = "CRYPTO"

    def __init__(self, client: CoinGeckoClient, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._client = client

    async def collect(self) -> CollectResult:
        rows = await self._client.top_coins()
        return CollectResult(quotes=normalize_rows(rows, COINGECKO_MAP), source="coingecko")
