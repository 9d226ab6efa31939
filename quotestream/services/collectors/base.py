"""Collector scheduling.

One Collector per market family. Each owns a self-rescheduling timer:
the next fetch is scheduled only after the previous one has been
handled, with the delay read from the config store at that moment.

Per collector state machine::

    Running{Idle -> Fetching -> Idle}  ... until stop() -> Stopped

A paused market stays in Idle: the timer keeps firing at the normal
cadence but no provider call is made.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog
from prometheus_client import Counter, Gauge, Histogram

from quotestream.services.collectors.normalize import apply_overrides
from quotestream.services.config_store import ConfigStore
from quotestream.services.events.bus import EventBus
from quotestream.services.events.schemas import Quote, quotes_event, warning_event

logger = structlog.get_logger(__name__)


# =============================================================================
# Prometheus Metrics
# =============================================================================

COLLECTOR_FETCHES_TOTAL = Counter(
    "quotestream_collector_fetches_total",
    "Collector fetch cycles",
    ["collector", "status"],  # success, failure, paused, discarded
)
COLLECTOR_BACKOFF_MS = Gauge(
    "quotestream_collector_backoff_ms",
    "Current failure backoff per collector (0 when healthy)",
    ["collector"],
)
COLLECTOR_QUOTES = Gauge(
    "quotestream_collector_quotes",
    "Quotes in the last successful event",
    ["collector"],
)
COLLECTOR_FETCH_DURATION = Histogram(
    "quotestream_collector_fetch_duration_seconds",
    "Duration of collector fetches (including retries)",
    ["collector"],
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class CollectResult:
    """Normalized output of one provider round-trip."""

    quotes: list[Quote]
    source: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class CollectorHealth:
    """Health snapshot reported by /health."""

    name: str
    event_type: str
    market: str
    running: bool
    paused: bool
    interval_ms: int
    backoff_ms: int
    consecutive_failures: int
    last_success_ts: Optional[int] = None
    last_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.event_type,
            "market": self.market,
            "running": self.running,
            "paused": self.paused,
            "intervalMs": self.interval_ms,
            "backoffMs": self.backoff_ms,
            "consecutiveFailures": self.consecutive_failures,
            "lastSuccessTs": self.last_success_ts,
            "lastError": self.last_error,
        }


class Collector(ABC):
    """
    Base class for market collectors.

    Subclasses implement ``collect()``: call the provider(s) (retries
    happen inside the provider client) and return normalized quotes.
    Everything else (pause checks, backoff, overrides, publishing,
    manual refresh) lives here.
    """

    name: str = "collector"
    event_type: str = ""
    market: str = "GLOBAL"
    debounce_seconds: float = 2.0

    def __init__(
        self,
        bus: EventBus,
        config: ConfigStore,
        backoff_max_ms: int = 10 * 60 * 1000,
        debounce_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the collector.

        Args:
            bus: Event bus to publish on (also the request_update source)
            config: Config store consulted before every fetch and reschedule
            backoff_max_ms: Upper bound for the failure backoff
            debounce_seconds: Minimum spacing between manual refreshes
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self._bus = bus
        self._config = config
        self._backoff_max_ms = backoff_max_ms
        if debounce_seconds is not None:
            self.debounce_seconds = debounce_seconds
        self._clock = clock

        self._running = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._manual_tasks: set[asyncio.Task] = set()
        self._detach_listener: Optional[Callable[[], None]] = None
        self._last_manual_at: Optional[float] = None

        self._backoff_ms = 0
        self._consecutive_failures = 0
        self._last_success_ts: Optional[int] = None
        self._last_error: Optional[str] = None

    @abstractmethod
    async def collect(self) -> CollectResult:
        """Fetch and normalize one snapshot. Raise on failure."""
        ...

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def backoff_ms(self) -> int:
        return self._backoff_ms

    async def start(self) -> Callable[[], None]:
        """
        Start collecting.

        The first fetch completes before this returns, so an event is
        available as soon as the collector counts as started.

        Returns:
            The stop handle.
        """
        if self._running:
            return self.stop

        self._running = True
        self._detach_listener = self._bus.on_request_update(self._on_request_update)
        logger.info(
            "collector_started",
            collector=self.name,
            market=self.market,
            interval_ms=self._config.get_interval(self.market),
        )

        await self.fetch(reason="initial")
        self._schedule_next()
        return self.stop

    def stop(self) -> None:
        """
        Stop collecting.

        In-flight fetches are not aborted; whatever they return is
        discarded.
        """
        if not self._running:
            return
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._detach_listener is not None:
            self._detach_listener()
            self._detach_listener = None
        COLLECTOR_BACKOFF_MS.labels(collector=self.name).set(0)
        logger.info("collector_stopped", collector=self.name)

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def next_delay_ms(self) -> int:
        """Backoff while failing, else the interval currently configured."""
        if self._backoff_ms > 0:
            return self._backoff_ms
        return self._config.get_interval(self.market)

    def _schedule_next(self) -> None:
        if not self._running:
            return
        delay_ms = self.next_delay_ms()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay_ms / 1000, self._on_timer)
        logger.debug("collector_scheduled", collector=self.name, delay_ms=delay_ms)

    def _on_timer(self) -> None:
        self._timer = None
        if not self._running:
            return
        self._cycle_task = asyncio.get_running_loop().create_task(
            self._run_cycle(), name=f"collector_{self.name}_cycle"
        )

    async def _run_cycle(self) -> None:
        try:
            await self.fetch(reason="scheduled")
        finally:
            self._schedule_next()

    # -------------------------------------------------------------------------
    # Fetch
    # -------------------------------------------------------------------------

    async def fetch(self, reason: str = "scheduled") -> Optional[bool]:
        """
        Run one fetch cycle.

        Returns:
            True on a published snapshot, False on failure, None when the
            cycle was skipped (stopped or paused) or its result discarded.
        """
        if not self._running:
            return None
        if self._config.get_paused(self.market):
            COLLECTOR_FETCHES_TOTAL.labels(collector=self.name, status="paused").inc()
            logger.debug("collector_paused_skip", collector=self.name, reason=reason)
            return None

        started = time.monotonic()
        try:
            result = await self.collect()
            if not result.quotes:
                raise ValueError(f"{self.name}: provider returned no usable quotes")
        except Exception as e:
            if not self._running:
                return self._discard(reason)
            self._record_failure(e, reason)
            return False
        finally:
            COLLECTOR_FETCH_DURATION.labels(collector=self.name).observe(
                time.monotonic() - started
            )

        if not self._running:
            return self._discard(reason)

        quotes = apply_overrides(result.quotes, self._config.get_overrides())
        event = quotes_event(self.event_type, quotes, source=result.source, **result.extra)
        self._bus.publish(event)

        self._backoff_ms = 0
        self._consecutive_failures = 0
        self._last_success_ts = event.ts
        self._last_error = None
        COLLECTOR_FETCHES_TOTAL.labels(collector=self.name, status="success").inc()
        COLLECTOR_BACKOFF_MS.labels(collector=self.name).set(0)
        COLLECTOR_QUOTES.labels(collector=self.name).set(len(quotes))
        logger.info(
            "collector_fetch_succeeded",
            collector=self.name,
            reason=reason,
            count=len(quotes),
            source=result.source,
        )
        return True

    def _discard(self, reason: str) -> None:
        COLLECTOR_FETCHES_TOTAL.labels(collector=self.name, status="discarded").inc()
        logger.info("collector_result_discarded", collector=self.name, reason=reason)
        return None

    def _record_failure(self, error: BaseException, reason: str) -> None:
        interval_ms = self._config.get_interval(self.market)
        grown = self._backoff_ms * 2 if self._backoff_ms else interval_ms * 2
        self._backoff_ms = min(self._backoff_max_ms, grown)
        self._consecutive_failures += 1
        message = str(error) or type(error).__name__
        self._last_error = message

        COLLECTOR_FETCHES_TOTAL.labels(collector=self.name, status="failure").inc()
        COLLECTOR_BACKOFF_MS.labels(collector=self.name).set(self._backoff_ms)
        logger.warning(
            "collector_fetch_failed",
            collector=self.name,
            reason=reason,
            error=message,
            backoff_ms=self._backoff_ms,
            consecutive_failures=self._consecutive_failures,
        )
        self._bus.publish(warning_event(self.name, message, self._backoff_ms))

    # -------------------------------------------------------------------------
    # Manual refresh
    # -------------------------------------------------------------------------

    def _on_request_update(self) -> None:
        if not self._running or self._config.get_paused(self.market):
            return
        now = self._clock()
        if (
            self._last_manual_at is not None
            and now - self._last_manual_at < self.debounce_seconds
        ):
            logger.debug("collector_refresh_debounced", collector=self.name)
            return
        self._last_manual_at = now

        task = asyncio.get_running_loop().create_task(
            self.fetch(reason="manual"), name=f"collector_{self.name}_manual"
        )
        self._manual_tasks.add(task)
        task.add_done_callback(self._manual_tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for in-flight manual and scheduled fetches (tests and shutdown)."""
        pending = list(self._manual_tasks)
        if self._cycle_task is not None and not self._cycle_task.done():
            pending.append(self._cycle_task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    def health(self) -> CollectorHealth:
        return CollectorHealth(
            name=self.name,
            event_type=self.event_type,
            market=self.market,
            running=self._running,
            paused=self._config.get_paused(self.market),
            interval_ms=self._config.get_interval(self.market),
            backoff_ms=self._backoff_ms,
            consecutive_failures=self._consecutive_failures,
            last_success_ts=self._last_success_ts,
            last_error=self._last_error,
        )
