"""Read-only reference tables for the international scanner.

Two JSON documents, both optional:

- exchanges: ``{"exchanges": [{"id", "tvExchange", "currency", "country",
  "countryCode"}]}``
- country companies: ``{"<countryCode>": {"companies": ["NAME", ...]}}``
"""

import json
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = structlog.get_logger(__name__)


class ExchangeInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    tv_exchange: str = Field(alias="tvExchange")
    currency: str = "USD"
    country: Optional[str] = None
    country_code: Optional[str] = Field(default=None, alias="countryCode")


def _read_json(path: Optional[str]):
    if not path:
        return None
    file = Path(path)
    if not file.exists():
        logger.warning("reference_table_missing", path=path)
        return None
    with file.open("r", encoding="utf-8") as f:
        return json.load(f)


def load_exchanges(path: Optional[str]) -> list[ExchangeInfo]:
    data = _read_json(path)
    rows = data.get("exchanges", []) if isinstance(data, dict) else []
    exchanges = []
    for row in rows:
        try:
            exchanges.append(ExchangeInfo.model_validate(row))
        except ValidationError as e:
            logger.warning("reference_exchange_skipped", row=row, error=str(e))
    logger.info("reference_exchanges_loaded", count=len(exchanges))
    return exchanges


def load_country_companies(path: Optional[str]) -> dict[str, list[str]]:
    data = _read_json(path)
    if not isinstance(data, dict):
        return {}
    table = {}
    for code, entry in data.items():
        companies = entry.get("companies", []) if isinstance(entry, dict) else []
        table[code.upper()] = [str(c).upper() for c in companies if c]
    logger.info("reference_companies_loaded", countries=len(table))
    return table


def ticker_of(symbol: str) -> str:
    """``EXCH:TICKER`` -> ``TICKER``."""
    return symbol.split(":", 1)[1] if ":" in symbol else symbol


def in_whitelist(symbol: str, companies: list[str]) -> bool:
    """Loose match of a symbol's ticker against a country's company list."""
    ticker = ticker_of(symbol).upper()
    if not ticker:
        return False
    return any(ticker in company or company in ticker for company in companies)
