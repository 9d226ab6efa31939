"""Simulated trading endpoints (instant market fills at cached prices)."""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from quotestream.core.errors import BAD_REQUEST, ApiError
from quotestream.deps.security import require_api_key
from quotestream.services.trading import (
    INVALID_SIDE,
    NOT_FOUND,
    SIDES,
    OrderResult,
    OrderSimulator,
    get_order_simulator,
)

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/trade",
    tags=["trade"],
    dependencies=[Depends(require_api_key)],
)


class OrderRequest(BaseModel):
    symbol: Optional[str] = None
    side: Optional[str] = None
    amount: Any = None
    market: Optional[str] = None


def _order_response(result: OrderResult) -> dict[str, Any]:
    if not result.success:
        raise ApiError(result.status_code, result.error)  # type: ignore[arg-type]
    return {"ok": True, "order": result.order.to_dict()}  # type: ignore[union-attr]


@router.get("/orders")
async def list_orders(simulator: OrderSimulator = Depends(get_order_simulator)):
    return {"ok": True, "orders": [o.to_dict() for o in simulator.list_orders()]}


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    simulator: OrderSimulator = Depends(get_order_simulator),
):
    order = simulator.get_order(order_id)
    if order is None:
        raise ApiError(404, NOT_FOUND)
    return {"ok": True, "order": order.to_dict()}


@router.post("/orders")
async def create_order(
    body: OrderRequest,
    simulator: OrderSimulator = Depends(get_order_simulator),
):
    """
    Place a market order.

    Errors:
    - 400 ``bad_request``: symbol, side or amount missing
    - 400 ``invalid_side``: side is not buy/sell
    - 404 ``symbol_not_found``: no cached quote matches
    - 400 ``price_unavailable`` / ``invalid_amount``
    """
    if not body.symbol or not body.side or body.amount is None or body.amount == "":
        raise ApiError(400, BAD_REQUEST)
    side = str(body.side).lower()
    if side not in SIDES:
        raise ApiError(400, INVALID_SIDE)

    result = simulator.create_order(
        symbol=body.symbol.lower(),
        side=side,
        amount=body.amount,
        market=body.market,
    )
    return _order_response(result)


@router.delete("/orders/{order_id}")
async def cancel_order(
    order_id: str,
    simulator: OrderSimulator = Depends(get_order_simulator),
):
    return _order_response(simulator.cancel_order(order_id))
