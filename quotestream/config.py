"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=4005, alias="PORT", description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")
    docs_enabled: bool = Field(default=True, description="Expose /docs and /openapi.json")

    # API Key Authentication
    api_key: Optional[str] = Field(
        default=None,
        description="Shared API key. If unset, authentication is disabled",
    )
    api_key_header_name: str = Field(
        default="X-API-Key", description="Header name for API key"
    )
    api_key_query_param: str = Field(
        default="key", description="Query parameter accepted as API key fallback"
    )

    # CORS
    allowed_origins: Optional[str] = Field(
        default=None,
        description="Comma-separated origin allow-list. Empty allows all origins",
    )

    # Persistence (Redis preferred, local file fallback)
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL")
    redis_host: Optional[str] = Field(default=None, description="Redis host")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_username: Optional[str] = Field(default=None, description="Redis username")
    redis_password: Optional[str] = Field(default=None, description="Redis password")
    redis_tls: bool = Field(default=False, description="Use TLS for Redis connection")
    config_redis_key: str = Field(
        default="admin:config", description="Redis key holding the admin config"
    )
    last_event_redis_key: str = Field(
        default="events:last", description="Redis key holding the last event"
    )
    data_dir: str = Field(
        default="data", description="Directory for the local file persistence fallback"
    )

    # Collector schedule
    default_interval_ms: int = Field(
        default=10000, description="GLOBAL poll interval in milliseconds"
    )
    stock_interval_ms: int = Field(default=15000, alias="BIST_INTERVAL_MS")
    crypto_interval_ms: Optional[int] = Field(default=None)
    forex_interval_ms: Optional[int] = Field(default=None)
    commodity_interval_ms: Optional[int] = Field(default=None)
    intl_interval_ms: int = Field(default=30000)
    min_interval_ms: int = Field(
        default=200, description="Floor applied to admin interval updates"
    )
    collector_backoff_max_ms: int = Field(
        default=10 * 60 * 1000,
        description="Upper bound for collector-level failure backoff",
    )
    paused_markets: Optional[str] = Field(
        default=None, description="Comma-separated market keys paused at boot"
    )

    # Providers
    collectors_enabled: str = Field(
        default="bist,crypto,forex,commodity",
        description="Comma-separated collectors to start (bist, crypto, coingecko, forex, commodity, intl)",
    )
    tradingview_session_id: Optional[str] = Field(
        default=None, description="Cookie header value forwarded to TradingView"
    )
    http_timeout_seconds: float = Field(default=15.0, description="Provider request timeout")
    request_retry_attempts: int = Field(
        default=3, ge=1, description="Attempts per provider request"
    )
    request_retry_base_delay_seconds: float = Field(
        default=2.0, description="First retry delay, doubled on each retry"
    )
    refresh_debounce_seconds: float = Field(
        default=2.0, description="Minimum spacing between manual refreshes"
    )
    intl_refresh_debounce_seconds: float = Field(default=5.0)
    exchange_rate_refresh_seconds: int = Field(default=3600)
    default_usd_try_rate: float = Field(default=33.0)
    intl_exchanges_path: Optional[str] = Field(
        default=None, description="JSON table of exchanges scanned by the intl collector"
    )
    country_companies_path: Optional[str] = Field(
        default=None, description="JSON whitelist of companies per country code"
    )

    # Streaming
    stream_keepalive_seconds: float = Field(default=15.0)
    stream_event_name: Optional[str] = Field(
        default=None, description="Optional SSE event name for data frames"
    )

    # Sentry Observability
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking and performance monitoring",
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment tag (development, staging, production)",
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry performance tracing sample rate (0.0-1.0)",
    )

    @property
    def cors_origins(self) -> list[str]:
        """Parsed origin allow-list (empty means allow all)."""
        return _split_csv(self.allowed_origins)

    @property
    def enabled_collectors(self) -> list[str]:
        return [name.lower() for name in _split_csv(self.collectors_enabled)]

    @property
    def redis_configured(self) -> bool:
        return bool(self.redis_url or self.redis_host)

    @property
    def default_intervals(self) -> dict[str, int]:
        """Per-market poll intervals at boot, before persisted state is merged."""
        base = self.default_interval_ms
        return {
            "GLOBAL": base,
            "STOCK": self.stock_interval_ms,
            "CRYPTO": self.crypto_interval_ms or base,
            "FOREX": self.forex_interval_ms or base,
            "COMMODITY": self.commodity_interval_ms or base,
            "INTL": self.intl_interval_ms,
        }

    @property
    def default_paused(self) -> dict[str, bool]:
        paused = {key: False for key in self.default_intervals}
        for market in _split_csv(self.paused_markets):
            paused[market.upper()] = True
        return paused


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
