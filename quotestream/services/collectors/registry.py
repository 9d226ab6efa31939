"""Builds, starts and stops the enabled collectors."""

import asyncio
from typing import Optional

import structlog

from quotestream.config import Settings
from quotestream.core.resilience import RetryConfig
from quotestream.services.collectors.base import Collector
from quotestream.services.collectors.bist import BistCollector
from quotestream.services.collectors.coingecko import CoinGeckoCollector
from quotestream.services.collectors.intl import IntlExchangesCollector
from quotestream.services.collectors.tradingview import (
    CommodityCollector,
    CryptoCollector,
    ForexCollector,
)
from quotestream.services.config_store import ConfigStore
from quotestream.services.events.bus import EventBus
from quotestream.services.providers.base import HttpProvider
from quotestream.services.providers.coingecko import CoinGeckoClient
from quotestream.services.providers.exchange_rate import ExchangeRateClient
from quotestream.services.providers.getmidas import GetMidasClient
from quotestream.services.providers.reference import (
    load_country_companies,
    load_exchanges,
)
from quotestream.services.providers.tradingview import TradingViewClient

logger = structlog.get_logger(__name__)

KNOWN_COLLECTORS = ("bist", "crypto", "coingecko", "forex", "commodity", "intl")


class CollectorManager:
    """Owns the collectors and the provider clients they share."""

    def __init__(
        self,
        collectors: list[Collector],
        providers: Optional[list[HttpProvider]] = None,
    ):
        self.collectors = collectors
        self._providers = providers or []

    def get(self, name: str) -> Optional[Collector]:
        for collector in self.collectors:
            if collector.name == name:
                return collector
        return None

    async def start_all(self) -> None:
        """Start every collector concurrently (each performs its first fetch)."""
        results = await asyncio.gather(
            *(collector.start() for collector in self.collectors),
            return_exceptions=True,
        )
        for collector, result in zip(self.collectors, results):
            if isinstance(result, BaseException):
                logger.error("collector_start_failed", collector=collector.name, error=str(result))

    async def stop_all(self) -> None:
        for collector in self.collectors:
            collector.stop()
        for provider in self._providers:
            await provider.close()
        logger.info("collectors_stopped", count=len(self.collectors))

    def health(self) -> list[dict]:
        return [collector.health().to_dict() for collector in self.collectors]


def build_collectors(
    settings: Settings,
    bus: EventBus,
    config: ConfigStore,
) -> CollectorManager:
    """Instantiate the collectors named in ``collectors_enabled``."""
    retry = RetryConfig(
        max_attempts=settings.request_retry_attempts,
        base_delay_seconds=settings.request_retry_base_delay_seconds,
    )
    timeout = settings.http_timeout_seconds
    common = dict(
        backoff_max_ms=settings.collector_backoff_max_ms,
        debounce_seconds=settings.refresh_debounce_seconds,
    )

    scanner = TradingViewClient(
        session_id=settings.tradingview_session_id, timeout=timeout, retry=retry
    )
    providers: list[HttpProvider] = [scanner]
    collectors: list[Collector] = []

    for name in settings.enabled_collectors:
        if name == "bist":
            scraper = GetMidasClient(timeout=timeout, retry=retry)
            providers.append(scraper)
            collectors.append(BistCollector(scraper, scanner, bus, config, **common))
        elif name == "crypto":
            collectors.append(CryptoCollector(scanner, bus, config, **common))
        elif name == "forex":
            collectors.append(ForexCollector(scanner, bus, config, **common))
        elif name == "commodity":
            collectors.append(CommodityCollector(scanner, bus, config, **common))
        elif name == "coingecko":
            client = CoinGeckoClient(timeout=timeout, retry=retry)
            providers.append(client)
            collectors.append(CoinGeckoCollector(client, bus, config, **common))
        elif name == "intl":
            rates = ExchangeRateClient(
                default_rate=settings.default_usd_try_rate,
                refresh_seconds=settings.exchange_rate_refresh_seconds,
                timeout=timeout,
            )
            providers.append(rates)
            collectors.append(
                IntlExchangesCollector(
                    scanner,
                    rates,
                    load_exchanges(settings.intl_exchanges_path),
                    load_country_companies(settings.country_companies_path),
                    bus,
                    config,
                    backoff_max_ms=settings.collector_backoff_max_ms,
                    debounce_seconds=settings.intl_refresh_debounce_seconds,
                )
            )
        else:
            logger.warning("collector_unknown", collector=name, known=list(KNOWN_COLLECTORS))

    logger.info("collectors_built", collectors=[c.name for c in collectors])
    return CollectorManager(collectors, providers)


# ===========================================
# Singleton instance
# ===========================================

_manager: Optional[CollectorManager] = None


def get_collector_manager() -> Optional[CollectorManager]:
    return _manager


def set_collector_manager(manager: Optional[CollectorManager]) -> None:
    global _manager
    _manager = manager
