"""GetMidas BIST 100 page scraper.

The page is a Next.js app; quotes live somewhere inside the JSON blob of
its ``__NEXT_DATA__`` script tag.
"""

import json
import re
from typing import Any, Optional

import structlog

from quotestream.core.resilience import RetryConfig
from quotestream.services.providers.base import HttpProvider

logger = structlog.get_logger(__name__)

PAGE_URL = "https://www.getmidas.com/canli-borsa/xu100-bist-100-hisseleri"

_NEXT_DATA_RE = re.compile(
    r'<script id="__NEXT_DATA__" type="application/json">([^<]+)</script>'
)

MIN_QUOTE_ROWS = 20


def extract_next_data(html: str) -> Optional[Any]:
    """Decode the ``__NEXT_DATA__`` JSON blob, or None."""
    match = _NEXT_DATA_RE.search(html or "")
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except ValueError:
        return None


def find_quote_rows(node: Any, min_rows: int = MIN_QUOTE_ROWS) -> Optional[list[dict]]:
    """Depth-first search for the first array of at least ``min_rows`` objects."""
    if isinstance(node, list):
        if len(node) >= min_rows and all(isinstance(x, dict) and x for x in node):
            return node
        for item in node:
            found = find_quote_rows(item, min_rows)
            if found is not None:
                return found
    elif isinstance(node, dict):
        for value in node.values():
            found = find_quote_rows(value, min_rows)
            if found is not None:
                return found
    return None


class GetMidasClient(HttpProvider):
    name = "getmidas"

    def __init__(
        self,
        timeout: float = 15.0,
        retry: Optional[RetryConfig] = None,
        client=None,
        url: str = PAGE_URL,
    ):
        super().__init__(timeout=timeout, retry=retry, client=client)
        self.url = url

    async def fetch_rows(self) -> list[dict[str, Any]]:
        """Scrape the page and return its raw quote rows (possibly empty)."""
        html = await self.request_text("GET", self.url)
        data = extract_next_data(html)
        if data is None:
            logger.warning("getmidas_next_data_missing", length=len(html))
            return []
        return find_quote_rows(data) or []
