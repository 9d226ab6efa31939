"""Admin-controlled runtime configuration.

Holds per-market poll intervals, pause flags and price overrides. The
store is read on every collector decision point (callers never cache
values) and persisted as one JSON record after every mutation.

Invariants:
- Unknown market keys fall back to ``GLOBAL``.
- Persisted state is merged over the defaults, never replacing them.
- Expired overrides are purged lazily, on read.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from quotestream.services.events.schemas import now_ms, to_finite_float
from quotestream.services.state_store import (
    CONFIG_RECORD,
    StateBackend,
    spawn_best_effort,
)

logger = structlog.get_logger(__name__)

GLOBAL = "GLOBAL"
MARKETS = ("GLOBAL", "STOCK", "CRYPTO", "FOREX", "COMMODITY", "INTL")
OVERRIDE_TYPES = ("set", "delta", "percent")

OverrideType = Literal["set", "delta", "percent"]


def market_key(market: Optional[str]) -> str:
    """Normalize a market name to its config key."""
    return str(market or GLOBAL).strip().upper() or GLOBAL


class Override(BaseModel):
    """Admin-injected price adjustment for one symbol."""

    model_config = ConfigDict(populate_by_name=True)

    type: OverrideType
    value: float
    expires_at: Optional[int] = Field(default=None, alias="expiresAt")

    def is_expired(self, now: int) -> bool:
        return bool(self.expires_at) and now >= self.expires_at  # type: ignore[operator]

    def apply(self, price: Optional[float]) -> Optional[float]:
        """Return the adjusted price (None when there is nothing to adjust)."""
        if self.type == "set":
            return self.value
        if price is None:
            return None
        if self.type == "delta":
            return price + self.value
        return price * (100 + self.value) / 100

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class ConfigState:
    """Single mutable configuration record for the deployment."""

    intervals: dict[str, int] = field(default_factory=dict)
    paused: dict[str, bool] = field(default_factory=dict)
    overrides: dict[str, Override] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "intervals": dict(self.intervals),
            "paused": dict(self.paused),
            "overrides": {sym: ov.to_dict() for sym, ov in self.overrides.items()},
        }


class ConfigStore:
    """
    Process-wide config context, constructed once and injected.

    Reads are synchronous and never fail. Mutators update memory first,
    then persist the whole state; persistence failures are logged by the
    backend and swallowed, so in-memory state stays authoritative.
    """

    def __init__(
        self,
        backend: StateBackend,
        default_intervals: dict[str, int],
        default_paused: Optional[dict[str, bool]] = None,
        min_interval_ms: int = 200,
        clock: Callable[[], int] = now_ms,
    ):
        self._backend = backend
        self._defaults = {market_key(k): int(v) for k, v in default_intervals.items()}
        self._defaults.setdefault(GLOBAL, 10000)
        self._min_interval_ms = min_interval_ms
        self._clock = clock
        paused = {k: False for k in self._defaults}
        paused.update({market_key(k): bool(v) for k, v in (default_paused or {}).items()})
        self._state = ConfigState(intervals=dict(self._defaults), paused=paused)

    @property
    def state(self) -> ConfigState:
        return self._state

    @property
    def min_interval_ms(self) -> int:
        return self._min_interval_ms

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Merge persisted state over the defaults (failures keep defaults)."""
        data = await self._backend.load(CONFIG_RECORD)
        if not data:
            logger.info("config_defaults_used", backend=self._backend.kind)
            return
        self.merge(data)
        logger.info(
            "config_loaded",
            backend=self._backend.kind,
            intervals=self._state.intervals,
            overrides=len(self._state.overrides),
        )

    def merge(self, data: dict[str, Any]) -> None:
        intervals = data.get("intervals")
        if isinstance(intervals, dict):
            for key, value in intervals.items():
                number = to_finite_float(value)
                if number is not None:
                    self._state.intervals[market_key(key)] = int(number)
        elif to_finite_float(data.get("intervalMs")) is not None:
            self._state.intervals[GLOBAL] = int(float(data["intervalMs"]))

        paused = data.get("paused")
        if isinstance(paused, dict):
            for key, value in paused.items():
                self._state.paused[market_key(key)] = bool(value)
        elif isinstance(paused, bool):
            self._state.paused[GLOBAL] = paused

        overrides = data.get("overrides")
        if isinstance(overrides, dict):
            for symbol, raw in overrides.items():
                try:
                    self._state.overrides[symbol] = Override.model_validate(raw)
                except ValidationError as e:
                    logger.warning("config_override_skipped", symbol=symbol, error=str(e))

    async def persist(self) -> bool:
        return await self._backend.save(CONFIG_RECORD, self._state.to_dict())

    # ------------------------------------------------------------------
    # Intervals
    # ------------------------------------------------------------------

    def get_interval(self, market: Optional[str] = GLOBAL) -> int:
        key = market_key(market)
        intervals = self._state.intervals
        if key in intervals:
            return intervals[key]
        return intervals.get(GLOBAL, self._defaults[GLOBAL])

    async def set_interval(self, market: Optional[str], ms: Any) -> int:
        """Set a market's interval, clamped to the floor. Returns the stored value."""
        key = market_key(market)
        number = to_finite_float(ms)
        if number is None or number <= 0:
            number = self._defaults.get(key, self._defaults[GLOBAL])
        value = max(self._min_interval_ms, int(number))
        self._state.intervals[key] = value
        logger.info("interval_updated", market=key, interval_ms=value)
        await self.persist()
        return value

    # ------------------------------------------------------------------
    # Pause flags
    # ------------------------------------------------------------------

    def get_paused(self, market: Optional[str] = GLOBAL) -> bool:
        key = market_key(market)
        paused = self._state.paused
        if key in paused:
            return paused[key]
        return paused.get(GLOBAL, False)

    async def set_paused(self, market: Optional[str], paused: bool) -> bool:
        key = market_key(market)
        self._state.paused[key] = bool(paused)
        logger.info("pause_updated", market=key, paused=bool(paused))
        await self.persist()
        return self._state.paused[key]

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    def _purge_expired(self) -> bool:
        now = self._clock()
        expired = [s for s, ov in self._state.overrides.items() if ov.is_expired(now)]
        for symbol in expired:
            del self._state.overrides[symbol]
        if expired:
            logger.info("overrides_expired", symbols=expired)
        return bool(expired)

    def get_overrides(self) -> dict[str, Override]:
        """Active overrides. Expired entries are purged (and persisted) first."""
        if self._purge_expired():
            spawn_best_effort(self.persist(), name="config_persist_after_purge")
        return dict(self._state.overrides)

    async def set_override(self, symbol: str, override: Override) -> bool:
        if not symbol:
            return False
        self._state.overrides[symbol] = override
        logger.info(
            "override_set",
            symbol=symbol,
            type=override.type,
            value=override.value,
            expires_at=override.expires_at,
        )
        await self.persist()
        return True

    async def remove_override(self, symbol: str) -> bool:
        removed = self._state.overrides.pop(symbol, None) is not None
        logger.info("override_removed", symbol=symbol, existed=removed)
        await self.persist()
        return True

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def markets(self) -> list[str]:
        keys = list(MARKETS)
        for key in list(self._state.intervals) + list(self._state.paused):
            if key not in keys:
                keys.append(key)
        return keys

    def snapshot(self) -> dict[str, Any]:
        """Current intervals, overrides and pause flags for the admin API."""
        markets = self.markets()
        return {
            "intervals": {m: self.get_interval(m) for m in markets},
            "overrides": {s: ov.to_dict() for s, ov in self.get_overrides().items()},
            "paused": {m: self.get_paused(m) for m in markets},
        }


# ===========================================
# Singleton instance
# ===========================================

_config_store: Optional[ConfigStore] = None


def get_config_store() -> ConfigStore:
    """
    Get the process config store.

    Lifespan installs one bound to the selected backend; without that an
    in-memory store seeded from settings is created on first use.
    """
    global _config_store
    if _config_store is None:
        from quotestream.config import get_settings
        from quotestream.services.state_store import InMemoryStateBackend

        settings = get_settings()
        _config_store = ConfigStore(
            InMemoryStateBackend(),
            settings.default_intervals,
            settings.default_paused,
            min_interval_ms=settings.min_interval_ms,
        )
    return _config_store


def set_config_store(store: Optional[ConfigStore]) -> None:
    global _config_store
    _config_store = store
