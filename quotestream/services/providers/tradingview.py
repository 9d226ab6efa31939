"""TradingView scanner client.

The scanner answers a POST with ``{"data": [{"s": "EXCH:TICKER", "d": [...]}]}``
where ``d`` is positional over the requested columns.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from quotestream.core.resilience import ProviderError, RetryConfig
from quotestream.services.providers.base import HttpProvider

logger = structlog.get_logger(__name__)

SCANNER_URL = "https://scanner.tradingview.com/global/scan"

QUOTE_COLUMNS = [
    "name",
    "description",
    "close",
    "change",
    "change_abs",
    "high",
    "low",
    "open",
    "volume",
    "market_cap_basic",
    "type",
    "subtype",
    "exchange",
]


@dataclass
class ScanQuery:
    """One scanner request body."""

    filters: list[tuple[str, list[str]]]
    columns: list[str] = field(default_factory=lambda: list(QUOTE_COLUMNS))
    sort_by: str = "market_cap_basic"
    sort_order: str = "desc"
    limit: int = 300
    lang: str = "tr"

    def to_payload(self) -> dict[str, Any]:
        return {
            "filter": [
                {"left": left, "operation": "in_range", "right": right}
                for left, right in self.filters
            ],
            "options": {"lang": self.lang},
            "range": [0, self.limit],
            "sort": {"sortBy": self.sort_by, "sortOrder": self.sort_order},
            "columns": self.columns,
        }


CRYPTO_QUERY = ScanQuery(filters=[("subtype", ["crypto"])])
FOREX_QUERY = ScanQuery(
    filters=[("type", ["forex"]), ("exchange", ["FX_IDC", "FX"])],
    sort_by="name",
    sort_order="asc",
)
COMMODITY_QUERY = ScanQuery(
    filters=[("type", ["commodity", "futures"])],
    sort_by="name",
    sort_order="asc",
)
BIST_QUERY = ScanQuery(
    filters=[("exchange", ["BIST"]), ("type", ["stock"])],
    limit=150,
)


def exchange_query(tv_exchange: str) -> ScanQuery:
    """Top stocks of one exchange by market cap."""
    return ScanQuery(filters=[("exchange", [tv_exchange]), ("type", ["stock"])], limit=100)


def rows_to_records(payload: Any, columns: list[str]) -> list[dict[str, Any]]:
    """
    Zip positional scanner rows with their column names.

    Returns:
        One dict per row with ``s`` (full symbol) plus one key per column.

    Raises:
        ProviderError: If the payload has no ``data`` array.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        raise ProviderError("tradingview returned no data array")

    records = []
    for item in payload["data"]:
        if not isinstance(item, dict):
            continue
        record: dict[str, Any] = {"s": item.get("s")}
        values = item.get("d")
        if isinstance(values, list):
            for idx, value in enumerate(values):
                key = columns[idx] if idx < len(columns) else f"col_{idx}"
                record[key] = value
        records.append(record)
    return records


class TradingViewClient(HttpProvider):
    """Scanner client shared by every collector that reads TradingView."""

    name = "tradingview"

    def __init__(
        self,
        session_id: Optional[str] = None,
        timeout: float = 15.0,
        retry: Optional[RetryConfig] = None,
        client=None,
        url: str = SCANNER_URL,
    ):
        headers = {"Content-Type": "application/json"}
        if session_id:
            headers["Cookie"] = session_id
        super().__init__(timeout=timeout, retry=retry, client=client, headers=headers)
        self.url = url

    async def scan(self, query: ScanQuery) -> list[dict[str, Any]]:
        payload = await self.request_json("POST", self.url, json=query.to_payload())
        records = rows_to_records(payload, query.columns)
        logger.debug("tradingview_scan_completed", rows=len(records), filters=query.filters)
        return records
