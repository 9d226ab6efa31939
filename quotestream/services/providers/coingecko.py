"""CoinGecko markets client."""

from typing import Any, Optional

from quotestream.core.resilience import ProviderError, RetryConfig
from quotestream.services.providers.base import HttpProvider

MARKETS_URL = "https://api.coingecko.com/api/v3/coins/markets"

MARKETS_PARAMS = {
    "vs_currency": "usd",
    "order": "market_cap_desc",
    "per_page": 100,
    "page": 1,
    "sparkline": "false",
    "price_change_percentage": "1h,24h,7d",
}


class CoinGeckoClient(HttpProvider):
    name = "coingecko"

    def __init__(
        self,
        timeout: float = 15.0,
        retry: Optional[RetryConfig] = None,
        client=None,
        url: str = MARKETS_URL,
    ):
        super().__init__(timeout=timeout, retry=retry, client=client)
        self.url = url

    async def top_coins(self) -> list[dict[str, Any]]:
        """Top 100 coins by market cap, as raw rows."""
        payload = await self.request_json("GET", self.url, params=MARKETS_PARAMS)
        if not isinstance(payload, list):
            raise ProviderError("coingecko returned an invalid response")
        return [row for row in payload if isinstance(row, dict)]
