"""Sentry initialization and configuration."""

import os
from typing import Any, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from quotestream import __version__
from quotestream.config import Settings

logger = structlog.get_logger(__name__)

# Long-lived or high-frequency routes that never produce useful traces
UNTRACED_ROUTES = ("/stream", "/health", "/metrics")


def _before_send(event: dict, hint: dict) -> Optional[dict]:
    """Drop client errors (bad orders, auth failures, unknown ids)."""
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]
        status_code = getattr(exc_value, "status_code", None)
        if isinstance(status_code, int) and 400 <= status_code < 500:
            return None

    response = event.get("contexts", {}).get("response", {})
    if 400 <= response.get("status_code", 0) < 500:
        return None

    return event


def _create_traces_sampler(settings: Settings) -> Any:
    def traces_sampler(sampling_context: dict) -> float:
        tx_name = sampling_context.get("transaction_context", {}).get("name", "")
        if any(route in tx_name for route in UNTRACED_ROUTES):
            return 0.0

        parent = sampling_context.get("parent_sampled")
        if parent is not None:
            return float(parent)

        return settings.sentry_traces_sample_rate

    return traces_sampler


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry if DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    if not settings.sentry_dsn:
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        release=os.environ.get("GIT_SHA", f"quotestream@{__version__}"),
        integrations=[
            LoggingIntegration(level=None, event_level="ERROR"),
            StarletteIntegration(transaction_style="url"),
            FastApiIntegration(transaction_style="url"),
        ],
        traces_sampler=_create_traces_sampler(settings),
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=_before_send,
    )

    sentry_sdk.set_tag("service", "quotestream")
    sentry_sdk.set_tag("collectors", ",".join(settings.enabled_collectors))
    sentry_sdk.set_tag("persistence", "redis" if settings.redis_configured else "file")

    logger.info(
        "sentry_initialized",
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )
    return True
