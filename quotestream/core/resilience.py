"""Retry utilities for provider requests.

Provides retry logic with exponential backoff for transient provider
failures (network errors, non-2xx responses, malformed JSON).

Usage:
    from quotestream.core.resilience import RetryConfig, retry_async

    payload = await retry_async(lambda: client.scan(body), RetryConfig())
"""

import asyncio
import json
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ProviderError(Exception):
    """A provider answered, but with something we cannot use."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.0  # Fraction of the delay added as random jitter


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """Calculate delay with exponential backoff and optional jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds before next retry
    """
    delay = config.base_delay_seconds * (config.exponential_base**attempt)
    delay = min(delay, config.max_delay_seconds)

    if config.jitter_factor:
        delay += delay * config.jitter_factor * random.random()

    return delay


def is_transient_error(error: BaseException) -> bool:
    """Check if a provider error is worth retrying.

    Network failures, HTTP status errors, provider payload errors and
    malformed JSON all count as transient.
    """
    return isinstance(
        error,
        (
            httpx.HTTPError,
            ProviderError,
            json.JSONDecodeError,
            ValueError,
            TimeoutError,
            asyncio.TimeoutError,
            OSError,
        ),
    )


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    operation_name: str = "provider_request",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run an async operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory
        config: Retry configuration (defaults: 3 attempts, 2s doubling)
        operation_name: Name used in log events
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        Result of the first successful attempt

    Raises:
        The last error once attempts are exhausted, or any non-transient
        error immediately.
    """
    config = config or RetryConfig()
    # At least one attempt is always made
    max_attempts = max(1, config.max_attempts)
    attempt = 0

    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_transient_error(e):
                raise

            if attempt + 1 >= max_attempts:
                logger.error(
                    "retry_exhausted",
                    operation=operation_name,
                    attempts=max_attempts,
                    error=str(e),
                )
                raise

            delay = calculate_backoff(attempt, config)
            logger.warning(
                "retry_scheduled",
                operation=operation_name,
                attempt=attempt + 1,
                max_attempts=max_attempts,
                delay_seconds=round(delay, 2),
                error=str(e),
            )
            await sleep(delay)
            attempt += 1
