"""USD to TRY conversion rate with periodic refresh."""

import time
from typing import Callable, Optional

import structlog

from quotestream.core.resilience import RetryConfig
from quotestream.services.events.schemas import to_positive_price
from quotestream.services.providers.base import HttpProvider

logger = structlog.get_logger(__name__)

RATES_URL = "https://api.exchangerate-api.com/v4/latest/USD"


class ExchangeRateClient(HttpProvider):
    """
    Caches the USD/TRY rate and refreshes it at most once per period.

    Failures keep the previous rate (initially the configured default).
    """

    name = "exchange_rate"

    def __init__(
        self,
        default_rate: float = 33.0,
        refresh_seconds: float = 3600.0,
        timeout: float = 15.0,
        retry: Optional[RetryConfig] = None,
        client=None,
        url: str = RATES_URL,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(
            timeout=timeout,
            retry=retry or RetryConfig(max_attempts=1),
            client=client,
        )
        self.url = url
        self.rate = default_rate
        self._refresh_seconds = refresh_seconds
        self._clock = clock
        self._fetched_at: Optional[float] = None

    def is_stale(self) -> bool:
        if self._fetched_at is None:
            return True
        return self._clock() - self._fetched_at >= self._refresh_seconds

    async def usd_try(self) -> float:
        """Current rate, refreshed first when stale."""
        if self.is_stale():
            await self.refresh()
        return self.rate

    async def refresh(self) -> float:
        self._fetched_at = self._clock()
        try:
            payload = await self.request_json("GET", self.url)
        except Exception as e:
            logger.warning("exchange_rate_refresh_failed", error=str(e), rate=self.rate)
            return self.rate

        rates = payload.get("rates") if isinstance(payload, dict) else None
        rate = to_positive_price((rates or {}).get("TRY"))
        if rate is None:
            logger.warning("exchange_rate_missing", rate=self.rate)
            return self.rate

        self.rate = rate
        logger.info("exchange_rate_refreshed", usd_try=round(rate, 4))
        return self.rate
