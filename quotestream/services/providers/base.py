"""Shared HTTP plumbing for market data providers."""

from typing import Any, Optional

import httpx
import structlog

from quotestream.core.resilience import ProviderError, RetryConfig, retry_async

logger = structlog.get_logger(__name__)

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0",
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "tr-TR,tr;q=0.9,en-US;q=0.8",
}


class HttpProvider:
    """
    Base class for providers talking HTTP through one AsyncClient.

    Every request runs in its own retry loop. Non-2xx responses and
    undecodable bodies raise ProviderError, which the loop treats as
    transient.
    """

    name = "http"

    def __init__(
        self,
        timeout: float = 15.0,
        retry: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        """
        Initialize the provider.

        Args:
            timeout: Per-request timeout in seconds
            retry: Retry policy (defaults: 3 attempts, 2s doubling)
            client: Pre-built client (tests inject one with a MockTransport)
            headers: Extra headers sent with every request
        """
        self.timeout = timeout
        self.retry = retry or RetryConfig()
        self._client = client
        self._owns_client = client is None
        self._headers = {**BROWSER_HEADERS, **(headers or {})}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client = self._get_client()
        kwargs = dict(kwargs)
        headers = {**self._headers, **kwargs.pop("headers", {})}
        response = await client.request(
            method, url, headers=headers, timeout=self.timeout, **kwargs
        )
        if not response.is_success:
            raise ProviderError(
                f"{self.name} HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request with retries and decode the JSON body."""

        async def _attempt() -> Any:
            response = await self._send(method, url, **kwargs)
            return response.json()

        return await retry_async(_attempt, self.retry, operation_name=f"{self.name}_request")

    async def request_text(self, method: str, url: str, **kwargs: Any) -> str:
        """Send a request with retries and return the body text."""

        async def _attempt() -> str:
            response = await self._send(method, url, **kwargs)
            return response.text

        return await retry_async(_attempt, self.retry, operation_name=f"{self.name}_request")
