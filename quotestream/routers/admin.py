"""Admin API: intervals, pause flags, price overrides and manual refresh."""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from quotestream.core.errors import BAD_REQUEST, ApiError
from quotestream.deps.security import require_api_key
from quotestream.services.config_store import (
    GLOBAL,
    OVERRIDE_TYPES,
    ConfigStore,
    Override,
    get_config_store,
    market_key,
)
from quotestream.services.events.bus import EventBus, get_event_bus
from quotestream.services.events.schemas import now_ms, to_finite_float

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/admin/api",
    tags=["admin"],
    dependencies=[Depends(require_api_key)],
)


# ===========================================
# Request Models
# ===========================================


class IntervalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    market: Optional[str] = None
    interval_ms: Any = Field(default=None, alias="intervalMs")


class OverrideRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: Optional[str] = None
    type: Optional[str] = None
    value: Any = None
    duration_sec: Any = Field(default=None, alias="durationSec")
    expires_at: Any = Field(default=None, alias="expiresAt")


class PauseRequest(BaseModel):
    market: Optional[str] = None
    paused: Any = False


# ===========================================
# Endpoints
# ===========================================


@router.get("/config")
async def get_config(store: ConfigStore = Depends(get_config_store)):
    """Current intervals, overrides and pause flags."""
    return store.snapshot()


@router.post("/interval")
async def set_interval(
    body: IntervalRequest,
    store: ConfigStore = Depends(get_config_store),
):
    """Set a market's poll interval (clamped to the minimum floor)."""
    market = market_key(body.market or GLOBAL)
    value = await store.set_interval(market, body.interval_ms)
    return {"ok": True, "intervalMs": value, "market": market}


def resolve_expiry(expires_at: Any, duration_sec: Any, now: int) -> Optional[int]:
    """
    Absolute expiry for an override request.

    ``expiresAt`` wins over ``durationSec``. Expiries that are not in the
    future are dropped, leaving the override permanent.
    """
    expiry: Optional[float] = None
    absolute = to_finite_float(expires_at)
    relative = to_finite_float(duration_sec)
    if absolute:
        expiry = absolute
    elif relative:
        expiry = now + relative * 1000
    if expiry is not None and expiry > now:
        return int(expiry)
    return None


@router.post("/override")
async def set_override(
    body: OverrideRequest,
    store: ConfigStore = Depends(get_config_store),
):
    """Install a price override: ``set``, ``delta`` or ``percent``."""
    value = to_finite_float(body.value)
    if not body.symbol or not body.type or body.type not in OVERRIDE_TYPES or value is None:
        raise ApiError(400, BAD_REQUEST)

    override = Override(
        type=body.type,  # type: ignore[arg-type]
        value=value,
        expires_at=resolve_expiry(body.expires_at, body.duration_sec, now_ms()),
    )
    await store.set_override(body.symbol, override)
    return {"ok": True}


@router.delete("/override/{symbol}")
async def remove_override(
    symbol: str,
    store: ConfigStore = Depends(get_config_store),
):
    await store.remove_override(symbol)
    return {"ok": True}


@router.post("/pause")
async def set_pause(
    body: PauseRequest,
    store: ConfigStore = Depends(get_config_store),
):
    """Pause or resume a market. Paused collectors keep their timer running."""
    paused = body.paused is True or body.paused == "true"
    market = market_key(body.market or GLOBAL)
    value = await store.set_paused(market, paused)
    return {"ok": True, "paused": value, "market": market}


@router.post("/request-update")
async def request_update(bus: EventBus = Depends(get_event_bus)):
    """Ask every running collector for an immediate refresh."""
    listeners = bus.request_update()
    return {"ok": True, "listeners": listeners}
